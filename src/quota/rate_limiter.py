"""Request rate limiter with per-tier ceilings.

Each caller has a record with timestamps of its recent requests. A request
is admitted when enough time elapsed since the previous request (throttle)
and when the number of requests in the last minute, hour and day stays
below ceilings of the caller's tier. Records are keyed by caller only:
limits of the tier passed to a check are applied to the caller's history.

Timestamps older than one day are dropped when a record is read, and the
periodic cleanup drops records that became empty.
"""

import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import RLock
from typing import Optional

import constants
from log import get_logger
from models.config import RateLimitConfiguration, Tier, TierLimitsConfiguration
from quota.clock import Clock, utc_now
from quota.hit_log import HitLog
from quota.results import DenialKind, RateLimitResult, RateLimitStats

logger = get_logger(__name__)


@dataclass
class RateRecord:
    """Recent requests of one caller, oldest first."""

    timestamps: deque[datetime] = field(default_factory=deque)
    last_request_at: Optional[datetime] = None

    def prune(self, now: datetime) -> None:
        """Drop timestamps that fell out of the longest window."""
        cutoff = now - constants.RATE_HISTORY_RETENTION
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()

    def in_window(self, now: datetime, window: timedelta) -> list[datetime]:
        """Return timestamps newer than `now - window`, oldest first."""
        start = now - window
        return [timestamp for timestamp in self.timestamps if timestamp > start]


class RateLimiter:
    """Rate limiter for all callers of one process."""

    def __init__(
        self,
        configuration: RateLimitConfiguration,
        hit_log: Optional[HitLog] = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize rate limiter with empty store."""
        self._configuration = configuration
        self._hit_log = hit_log
        self._clock = clock
        self._lock = RLock()
        self._records: dict[str, RateRecord] = {}

    def refresh_config(self, configuration: RateLimitConfiguration) -> None:
        """Replace tier ceilings; request history is kept."""
        with self._lock:
            self._configuration = configuration
        logger.info("Rate limiter configuration refreshed")

    def get_tier_limits(self, tier: Tier) -> TierLimitsConfiguration:
        """Return ceilings of the tier."""
        return self._configuration.for_tier(tier)

    def check_rate_limit(
        self, caller_id: str, tier: Tier = Tier.DEMO, session_id: str = ""
    ) -> RateLimitResult:
        """Decide whether the caller may make a request now.

        The check does not record the request; call record_request after an
        admitted check, or use acquire to do both at once.
        """
        limits = self.get_tier_limits(tier)
        with self._lock:
            now = self._clock()
            record = self._get_or_create(caller_id, now)
            result = self._evaluate(record, limits, tier, now)

        if not result.allowed and self._hit_log is not None:
            self._hit_log.log_denial(
                caller_id, session_id, result, metadata={"tier": tier.value}
            )
        return result

    def record_request(self, caller_id: str) -> None:
        """Record a request made now."""
        with self._lock:
            now = self._clock()
            record = self._get_or_create(caller_id, now)
            record.timestamps.append(now)
            record.last_request_at = now

    def acquire(
        self, caller_id: str, tier: Tier = Tier.DEMO, session_id: str = ""
    ) -> RateLimitResult:
        """Check the rate limit and record the request when it is admitted.

        Both steps happen under one lock, so concurrent requests of the same
        caller can not all pass a check before any of them is recorded.
        """
        with self._lock:
            result = self.check_rate_limit(caller_id, tier, session_id)
            if result.allowed:
                self.record_request(caller_id)
        return result

    def get_stats(self, caller_id: str, tier: Tier = Tier.DEMO) -> RateLimitStats:
        """Return request counts of the caller for every window."""
        limits = self.get_tier_limits(tier)
        with self._lock:
            now = self._clock()
            record = self._get_or_create(caller_id, now)
            last_minute = len(record.in_window(now, constants.ONE_MINUTE))
            last_hour = len(record.in_window(now, constants.ONE_HOUR))
            last_day = len(record.in_window(now, constants.ONE_DAY))
            last_request_at = record.last_request_at

        return RateLimitStats(
            tier=tier,
            limits=limits,
            requests_last_minute=last_minute,
            requests_last_hour=last_hour,
            requests_last_day=last_day,
            remaining_per_minute=_remaining(limits.requests_per_minute, last_minute),
            remaining_per_hour=_remaining(limits.requests_per_hour, last_hour),
            remaining_per_day=_remaining(limits.requests_per_day, last_day),
            last_request_at=last_request_at,
        )

    def reset_caller(self, caller_id: str) -> bool:
        """Forget request history of the caller."""
        with self._lock:
            removed = self._records.pop(caller_id, None) is not None
        if removed:
            logger.info("Rate limit history of %s has been reset", caller_id)
        return removed

    def cleanup(self) -> int:
        """Drop timestamps older than one day and records left empty.

        Returns number of removed records.
        """
        with self._lock:
            now = self._clock()
            for record in self._records.values():
                record.prune(now)
            stale = [
                caller_id
                for caller_id, record in self._records.items()
                if not record.timestamps
            ]
            for caller_id in stale:
                del self._records[caller_id]
        if stale:
            logger.info("Removed %d idle rate limit records", len(stale))
        return len(stale)

    def record_count(self) -> int:
        """Return number of callers held in memory."""
        with self._lock:
            return len(self._records)

    def _get_or_create(self, caller_id: str, now: datetime) -> RateRecord:
        record = self._records.get(caller_id)
        if record is None:
            record = RateRecord()
            self._records[caller_id] = record
        else:
            record.prune(now)
        return record

    def _evaluate(
        self,
        record: RateRecord,
        limits: TierLimitsConfiguration,
        tier: Tier,
        now: datetime,
    ) -> RateLimitResult:
        interval = timedelta(milliseconds=limits.min_request_interval_ms)
        if interval and record.last_request_at is not None:
            elapsed = now - record.last_request_at
            if elapsed < interval:
                wait = (interval - elapsed).total_seconds()
                return RateLimitResult(
                    allowed=False,
                    tier=tier,
                    denial_kind=DenialKind.THROTTLE,
                    limit=limits.min_request_interval_ms,
                    used=int(elapsed.total_seconds() * 1000),
                    remaining=0,
                    retry_after=wait,
                    message=(
                        f"Please wait {math.ceil(wait)} seconds "
                        "before making another request."
                    ),
                )

        windows = (
            (
                DenialKind.REQUESTS_PER_MINUTE,
                constants.ONE_MINUTE,
                limits.requests_per_minute,
            ),
            (DenialKind.REQUESTS_PER_HOUR, constants.ONE_HOUR, limits.requests_per_hour),
            (DenialKind.REQUESTS_PER_DAY, constants.ONE_DAY, limits.requests_per_day),
        )
        minute_count = 0
        for kind, window, ceiling in windows:
            in_window = record.in_window(now, window)
            if kind == DenialKind.REQUESTS_PER_MINUTE:
                minute_count = len(in_window)
            if ceiling is None or len(in_window) < ceiling:
                continue
            wait = max(0.0, (in_window[0] + window - now).total_seconds())
            return RateLimitResult(
                allowed=False,
                tier=tier,
                denial_kind=kind,
                limit=ceiling,
                used=len(in_window),
                remaining=0,
                retry_after=wait,
                message=_window_denial_message(kind, ceiling, wait),
            )

        return RateLimitResult(
            allowed=True,
            tier=tier,
            limit=limits.requests_per_minute,
            used=minute_count,
            remaining=_remaining(limits.requests_per_minute, minute_count),
        )


def _remaining(ceiling: Optional[int], used: int) -> Optional[int]:
    """Return requests left in a window, None for unbounded windows."""
    if ceiling is None:
        return None
    return max(0, ceiling - used)


def _window_denial_message(kind: DenialKind, ceiling: int, wait: float) -> str:
    match kind:
        case DenialKind.REQUESTS_PER_MINUTE:
            return f"Rate limit exceeded: {ceiling} requests per minute. Please wait."
        case DenialKind.REQUESTS_PER_HOUR:
            return f"Rate limit exceeded: {ceiling} requests per hour. Please wait."
        case _:
            hours = math.ceil(wait / constants.ONE_HOUR.total_seconds())
            return (
                f"Daily rate limit exceeded: {ceiling} requests per day. "
                f"Resets in {hours} hours."
            )
