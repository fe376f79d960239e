"""Values returned by admission checks and usage queries.

A denial is never raised as an exception: checks return a result object
that tells the caller whether the request is admitted and, if not, which
limit was hit, how far the caller got and when the limit resets.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from models.config import Tier, TierLimitsConfiguration


class DenialKind(str, Enum):
    """Limit that caused a request to be denied."""

    PER_REQUEST = "per_request"
    PER_SESSION = "per_session"
    DAILY = "daily"
    MONTHLY = "monthly"
    THROTTLE = "throttle"
    REQUESTS_PER_MINUTE = "requests_per_minute"
    REQUESTS_PER_HOUR = "requests_per_hour"
    REQUESTS_PER_DAY = "requests_per_day"
    FILE_SIZE = "file_size"
    FILE_TYPE = "file_type"
    PAGES_PER_DOCUMENT = "pages_per_document"
    DOCUMENTS_PER_SESSION = "documents_per_session"
    PAGES_PER_SESSION = "pages_per_session"
    DOCUMENTS_PER_DAY = "documents_per_day"
    PAGES_PER_DAY = "pages_per_day"
    QUEUE_FULL = "queue_full"


TOKEN_DENIALS = frozenset(
    {
        DenialKind.PER_REQUEST,
        DenialKind.PER_SESSION,
        DenialKind.DAILY,
        DenialKind.MONTHLY,
    }
)

RATE_DENIALS = frozenset(
    {
        DenialKind.THROTTLE,
        DenialKind.REQUESTS_PER_MINUTE,
        DenialKind.REQUESTS_PER_HOUR,
        DenialKind.REQUESTS_PER_DAY,
    }
)

FILE_DENIALS = frozenset({DenialKind.FILE_SIZE, DenialKind.FILE_TYPE})


def percent_used(used: int, limit: int) -> int:
    """Return share of the limit already used, rounded half up.

    Zero is returned for uncapped limits.
    """
    if limit <= 0:
        return 0
    value = Decimal(used) * 100 / Decimal(limit)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def remaining_units(used: int, limit: int) -> int:
    """Return units left before the limit is reached, never negative."""
    return max(0, limit - used)


class AdmissionResult(BaseModel):
    """Outcome of a quota or queue admission check."""

    allowed: bool
    denial_kind: Optional[DenialKind] = None
    limit: Optional[int] = None
    used: int = 0
    remaining: Optional[int] = None
    resets_at: Optional[datetime] = None
    message: Optional[str] = None
    is_override: bool = False

    @classmethod
    def overridden(cls) -> "AdmissionResult":
        """Admit a request that skips every ceiling."""
        return cls(allowed=True, is_override=True)

    @classmethod
    def denied(  # pylint: disable=too-many-arguments
        cls,
        denial_kind: DenialKind,
        limit: int,
        used: int,
        message: str,
        remaining: int = 0,
        resets_at: Optional[datetime] = None,
    ) -> "AdmissionResult":
        """Construct a denial."""
        return cls(
            allowed=False,
            denial_kind=denial_kind,
            limit=limit,
            used=used,
            remaining=remaining,
            resets_at=resets_at,
            message=message,
        )


class RateLimitResult(BaseModel):
    """Outcome of a request rate check.

    `retry_after` is expressed in seconds.
    """

    allowed: bool
    tier: Tier
    denial_kind: Optional[DenialKind] = None
    limit: Optional[int] = None
    used: int = 0
    remaining: Optional[int] = None
    retry_after: Optional[float] = None
    message: Optional[str] = None


class HorizonUsage(BaseModel):
    """Usage of one counter against its ceiling."""

    used: int
    limit: int
    remaining: int
    percent_used: int
    resets_at: Optional[datetime] = None

    @classmethod
    def of(
        cls, used: int, limit: int, resets_at: Optional[datetime] = None
    ) -> "HorizonUsage":
        """Compute remaining and percentage for the given counter."""
        return cls(
            used=used,
            limit=limit,
            remaining=remaining_units(used, limit) if limit > 0 else 0,
            percent_used=percent_used(used, limit),
            resets_at=resets_at,
        )


class TokenLimits(BaseModel):
    """Token ceilings in effect."""

    per_request: int
    per_session: int
    daily: int
    monthly: int


class UsageStats(BaseModel):
    """Token usage of a caller and one of its sessions."""

    session: HorizonUsage
    daily: HorizonUsage
    monthly: HorizonUsage
    limits: TokenLimits
    request_count: int = 0
    last_request_at: Optional[datetime] = None


class QueueStats(BaseModel):
    """State of the OCR job queue."""

    active_jobs: int
    pending_jobs: int
    max_concurrent_jobs: int


class OcrUsageStats(BaseModel):
    """OCR usage of a caller and one of its sessions."""

    session_pages: HorizonUsage
    session_documents: HorizonUsage
    daily_pages: HorizonUsage
    daily_documents: HorizonUsage
    max_file_size_mb: int
    max_pages_per_document: int
    supported_types: list[str] = Field(default_factory=list)
    queue: Optional[QueueStats] = None


class RateLimitStats(BaseModel):
    """Request counts of a caller in every window."""

    tier: Tier
    limits: TierLimitsConfiguration
    requests_last_minute: int
    requests_last_hour: int
    requests_last_day: int
    remaining_per_minute: Optional[int] = None
    remaining_per_hour: Optional[int] = None
    remaining_per_day: Optional[int] = None
    last_request_at: Optional[datetime] = None
