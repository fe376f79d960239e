"""Quota handling helper functions."""

import math
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import HTTPException, status

import constants
from log import get_logger
from quota.clock import utc_now
from quota.results import (
    FILE_DENIALS,
    RATE_DENIALS,
    TOKEN_DENIALS,
    AdmissionResult,
    DenialKind,
    RateLimitResult,
)

logger = get_logger(__name__)


def error_code(denial_kind: DenialKind) -> str:
    """Return machine readable error code of the denial kind."""
    if denial_kind in RATE_DENIALS:
        return "RATE_LIMIT_EXCEEDED"
    if denial_kind in TOKEN_DENIALS:
        return "TOKEN_LIMIT_EXCEEDED"
    if denial_kind in FILE_DENIALS:
        return "FILE_VALIDATION_FAILED"
    return "OCR_LIMIT_EXCEEDED"


def status_code_for(denial_kind: DenialKind) -> int:
    """Return HTTP status code used to report the denial kind."""
    if denial_kind in FILE_DENIALS:
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_429_TOO_MANY_REQUESTS


def retry_after_seconds(
    result: AdmissionResult | RateLimitResult, now: Optional[datetime] = None
) -> int:
    """Return whole seconds a client should wait before retrying."""
    if isinstance(result, RateLimitResult):
        if result.retry_after is None:
            return constants.DEFAULT_RATE_RETRY_AFTER
        return max(1, math.ceil(result.retry_after))
    if result.resets_at is None:
        return constants.DEFAULT_QUOTA_RETRY_AFTER
    now = now or utc_now()
    return max(1, math.ceil((result.resets_at - now).total_seconds()))


def rate_limit_headers(
    result: AdmissionResult | RateLimitResult, now: Optional[datetime] = None
) -> dict[str, str]:
    """Return headers describing the limit, for client side backoff."""
    now = now or utc_now()
    retry_after = retry_after_seconds(result, now)
    if isinstance(result, AdmissionResult) and result.resets_at is not None:
        reset = result.resets_at
    else:
        reset = now + timedelta(seconds=retry_after)
    return {
        constants.HEADER_RATE_LIMIT_LIMIT: str(result.limit or 0),
        constants.HEADER_RATE_LIMIT_REMAINING: str(result.remaining or 0),
        constants.HEADER_RATE_LIMIT_RESET: str(math.floor(reset.timestamp())),
        constants.HEADER_RETRY_AFTER: str(retry_after),
    }


def denial_detail(result: AdmissionResult | RateLimitResult) -> dict[str, Any]:
    """Return body of an error response describing the denial."""
    if result.denial_kind is None:
        raise ValueError("Result does not describe a denial")
    detail: dict[str, Any] = {
        "response": result.message,
        "cause": error_code(result.denial_kind),
        "denial_kind": result.denial_kind.value,
        "limit": result.limit,
        "used": result.used,
        "remaining": result.remaining,
    }
    if isinstance(result, RateLimitResult):
        detail["tier"] = result.tier.value
        detail["retry_after"] = result.retry_after
    elif result.resets_at is not None:
        detail["resets_at"] = result.resets_at.isoformat()
    return detail


def raise_for_denial(result: AdmissionResult | RateLimitResult) -> None:
    """Raise HTTPException when the result denies the request.

    Args:
        result: Outcome of an admission check.

    Raises:
        HTTPException: With status 400 for file validation denials, or
            status 429 for quota, rate and queue denials.
    """
    if result.allowed or result.denial_kind is None:
        return
    logger.info("Request denied: %s", result.denial_kind.value)
    raise HTTPException(
        status_code=status_code_for(result.denial_kind),
        detail=denial_detail(result),
        headers=rate_limit_headers(result),
    )
