"""Shared pytest fixtures for unit tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from models.config import (
    AdminConfiguration,
    OcrQuotaConfiguration,
    QuotaHandlersConfiguration,
    RateLimitConfiguration,
    TokenQuotaConfiguration,
)
from quota.hit_log import HitLog
from quota.quota_tracker import QuotaTracker


class FakeClock:
    """Clock that moves only when told to."""

    def __init__(self, now: datetime) -> None:
        """Initialize clock stopped at the given instant."""
        self.now = now

    def __call__(self) -> datetime:
        """Return the current fake time."""
        return self.now

    def advance(self, **kwargs: float) -> None:
        """Move the clock forward, arguments are passed to timedelta."""
        self.now += timedelta(**kwargs)


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    """Clock stopped at noon of a known day in the middle of a month."""
    return FakeClock(datetime(2025, 3, 14, 12, 0, 0, tzinfo=UTC))


@pytest.fixture(name="hit_log")
def hit_log_fixture(clock: FakeClock) -> HitLog:
    """Empty hit log driven by the fake clock."""
    return HitLog(capacity=100, clock=clock)


@pytest.fixture(name="admin_configuration")
def admin_configuration_fixture() -> AdminConfiguration:
    """Admin configuration with override and bypass enabled."""
    return AdminConfiguration(
        override_enabled=True,
        override_key="admin-secret",
        ocr_bypass_enabled=True,
        ocr_bypass_key="bypass-secret",
    )


@pytest.fixture(name="quota_tracker")
def quota_tracker_fixture(
    hit_log: HitLog, clock: FakeClock, admin_configuration: AdminConfiguration
) -> QuotaTracker:
    """Quota tracker with default ceilings."""
    return QuotaTracker(
        TokenQuotaConfiguration(),
        OcrQuotaConfiguration(),
        admin_configuration,
        hit_log,
        clock,
    )


@pytest.fixture(name="quota_handlers")
def quota_handlers_fixture(
    admin_configuration: AdminConfiguration,
) -> QuotaHandlersConfiguration:
    """Configuration of all admission components without throttling."""
    return QuotaHandlersConfiguration(
        tokens=TokenQuotaConfiguration(),
        ocr=OcrQuotaConfiguration(max_concurrent_jobs=2),
        rate_limits=RateLimitConfiguration(
            demo={"requests_per_minute": 3, "requests_per_hour": 60},
            authenticated={"requests_per_minute": 30},
            premium={"requests_per_minute": 60},
        ),
        admin=admin_configuration,
        scheduler={"enabled": False},
    )
