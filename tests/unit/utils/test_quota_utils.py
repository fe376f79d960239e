"""Unit tests for functions defined in utils.quota module."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import HTTPException

from models.config import Tier
from quota.results import AdmissionResult, DenialKind, RateLimitResult
from utils.quota import (
    denial_detail,
    error_code,
    raise_for_denial,
    rate_limit_headers,
    retry_after_seconds,
    status_code_for,
)

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=UTC)


@pytest.fixture(name="daily_denial")
def daily_denial_fixture() -> AdmissionResult:
    """Denial of the daily token ceiling."""
    return AdmissionResult.denied(
        DenialKind.DAILY,
        limit=100000,
        used=98000,
        remaining=2000,
        resets_at=NOW + timedelta(hours=12),
        message="Daily limit of 100,000 tokens reached. Resets at midnight UTC.",
    )


@pytest.fixture(name="rate_denial")
def rate_denial_fixture() -> RateLimitResult:
    """Denial of the per minute request ceiling."""
    return RateLimitResult(
        allowed=False,
        tier=Tier.DEMO,
        denial_kind=DenialKind.REQUESTS_PER_MINUTE,
        limit=10,
        used=10,
        remaining=0,
        retry_after=42.5,
        message="Rate limit exceeded: 10 requests per minute. Please wait.",
    )


@pytest.mark.parametrize(
    "denial_kind, code",
    [
        (DenialKind.THROTTLE, "RATE_LIMIT_EXCEEDED"),
        (DenialKind.REQUESTS_PER_DAY, "RATE_LIMIT_EXCEEDED"),
        (DenialKind.PER_REQUEST, "TOKEN_LIMIT_EXCEEDED"),
        (DenialKind.MONTHLY, "TOKEN_LIMIT_EXCEEDED"),
        (DenialKind.FILE_TYPE, "FILE_VALIDATION_FAILED"),
        (DenialKind.PAGES_PER_DAY, "OCR_LIMIT_EXCEEDED"),
        (DenialKind.QUEUE_FULL, "OCR_LIMIT_EXCEEDED"),
    ],
)
def test_error_code(denial_kind: DenialKind, code: str) -> None:
    """Test mapping of denial kinds to error codes."""
    assert error_code(denial_kind) == code


def test_status_code_for() -> None:
    """Test that only file denials are reported as bad requests."""
    assert status_code_for(DenialKind.FILE_SIZE) == 400
    assert status_code_for(DenialKind.FILE_TYPE) == 400
    assert status_code_for(DenialKind.DAILY) == 429
    assert status_code_for(DenialKind.QUEUE_FULL) == 429
    assert status_code_for(DenialKind.THROTTLE) == 429


class TestRetryAfterSeconds:
    """Unit tests for the retry_after_seconds function."""

    def test_quota_denial(self, daily_denial: AdmissionResult) -> None:
        """Test that quota denial is retried when the counter resets."""
        assert retry_after_seconds(daily_denial, NOW) == 12 * 3600

    def test_quota_denial_without_reset(self) -> None:
        """Test fallback for denial that never resets by itself."""
        result = AdmissionResult.denied(
            DenialKind.QUEUE_FULL, limit=2, used=2, message="full"
        )
        assert retry_after_seconds(result, NOW) == 3600

    def test_rate_denial(self, rate_denial: RateLimitResult) -> None:
        """Test that fractional seconds are rounded up."""
        assert retry_after_seconds(rate_denial) == 43

    def test_rate_denial_without_retry(self) -> None:
        """Test fallback for rate result without retry hint."""
        result = RateLimitResult(allowed=False, tier=Tier.DEMO)
        assert retry_after_seconds(result) == 60

    def test_never_zero(self) -> None:
        """Test that client is always told to wait at least a second."""
        result = RateLimitResult(allowed=False, tier=Tier.DEMO, retry_after=0.0)
        assert retry_after_seconds(result) == 1


def test_rate_limit_headers_quota(daily_denial: AdmissionResult) -> None:
    """Test headers of quota denial."""
    headers = rate_limit_headers(daily_denial, NOW)
    assert headers == {
        "X-RateLimit-Limit": "100000",
        "X-RateLimit-Remaining": "2000",
        "X-RateLimit-Reset": str(int((NOW + timedelta(hours=12)).timestamp())),
        "Retry-After": str(12 * 3600),
    }


def test_rate_limit_headers_rate(rate_denial: RateLimitResult) -> None:
    """Test headers of rate denial."""
    headers = rate_limit_headers(rate_denial, NOW)
    assert headers["X-RateLimit-Limit"] == "10"
    assert headers["X-RateLimit-Remaining"] == "0"
    assert headers["Retry-After"] == "43"
    assert headers["X-RateLimit-Reset"] == str(int(NOW.timestamp()) + 43)


def test_denial_detail_quota(daily_denial: AdmissionResult) -> None:
    """Test body describing quota denial."""
    detail = denial_detail(daily_denial)
    assert detail == {
        "response": "Daily limit of 100,000 tokens reached. Resets at midnight UTC.",
        "cause": "TOKEN_LIMIT_EXCEEDED",
        "denial_kind": "daily",
        "limit": 100000,
        "used": 98000,
        "remaining": 2000,
        "resets_at": "2025-03-15T00:00:00+00:00",
    }


def test_denial_detail_rate(rate_denial: RateLimitResult) -> None:
    """Test body describing rate denial."""
    detail = denial_detail(rate_denial)
    assert detail["cause"] == "RATE_LIMIT_EXCEEDED"
    assert detail["tier"] == "demo"
    assert detail["retry_after"] == 42.5
    assert "resets_at" not in detail


def test_denial_detail_of_admission() -> None:
    """Test that admitted result can not be described as denial."""
    with pytest.raises(ValueError, match="does not describe a denial"):
        denial_detail(AdmissionResult(allowed=True))


def test_raise_for_denial_allowed() -> None:
    """Test that admitted result raises nothing."""
    raise_for_denial(AdmissionResult(allowed=True, limit=10, used=1, remaining=9))
    raise_for_denial(RateLimitResult(allowed=True, tier=Tier.ADMIN))


def test_raise_for_denial_quota(daily_denial: AdmissionResult) -> None:
    """Test that quota denial is raised as 429 with backoff headers."""
    with pytest.raises(HTTPException) as e:
        raise_for_denial(daily_denial)
    assert e.value.status_code == 429
    assert e.value.detail["cause"] == "TOKEN_LIMIT_EXCEEDED"  # type: ignore
    assert e.value.headers is not None
    assert "Retry-After" in e.value.headers
    assert e.value.headers["X-RateLimit-Limit"] == "100000"


def test_raise_for_denial_file() -> None:
    """Test that file denial is raised as 400."""
    result = AdmissionResult.denied(
        DenialKind.FILE_TYPE, limit=0, used=0, message="File type text/plain ..."
    )
    with pytest.raises(HTTPException) as e:
        raise_for_denial(result)
    assert e.value.status_code == 400
    assert e.value.detail["denial_kind"] == "file_type"  # type: ignore
