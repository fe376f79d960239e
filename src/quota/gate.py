"""Service object holding all admission components.

One gate is built when the service starts and passed to every consumer.
The gate owns a hit log shared by all components and one clock, so all
components agree on the current time.
"""

from datetime import timedelta
from typing import Optional

from pydantic import BaseModel

from log import get_logger
from metrics.utils import record_admission, setup_limit_metrics
from models.config import QuotaHandlersConfiguration, Tier
from quota.clock import Clock, utc_now
from quota.hit_log import HitLog
from quota.job_queue import JobQueue
from quota.quota_tracker import QuotaTracker
from quota.rate_limiter import RateLimiter
from quota.results import AdmissionResult, RateLimitResult

logger = get_logger(__name__)


class AdmissionDecision(BaseModel):
    """Combined outcome of the rate limiter and the quota tracker."""

    allowed: bool
    tier: Tier
    rate_limit: RateLimitResult
    quota: Optional[AdmissionResult] = None

    @property
    def denial(self) -> Optional[AdmissionResult | RateLimitResult]:
        """Return the result that denied the request, if any."""
        if not self.rate_limit.allowed:
            return self.rate_limit
        if self.quota is not None and not self.quota.allowed:
            return self.quota
        return None


class CleanupReport(BaseModel):
    """Number of records removed by one cleanup pass."""

    expired_sessions: int
    idle_rate_records: int
    finished_jobs: int


class AdmissionGate:
    """Rate limiter, quota tracker, job queue and hit log of one process."""

    def __init__(
        self, configuration: QuotaHandlersConfiguration, clock: Clock = utc_now
    ) -> None:
        """Build all components from configuration."""
        self.clock = clock
        self.hit_log = HitLog(configuration.hit_log.capacity, clock)
        self.quota_tracker = QuotaTracker(
            configuration.tokens,
            configuration.ocr,
            configuration.admin,
            self.hit_log,
            clock,
            timedelta(seconds=configuration.session_ttl),
        )
        self.rate_limiter = RateLimiter(
            configuration.rate_limits, self.hit_log, clock
        )
        self.job_queue = JobQueue(
            self.quota_tracker, configuration.ocr, self.hit_log, clock
        )
        self.configuration = configuration
        setup_limit_metrics(configuration)

    def admit_completion(
        self,
        caller_id: str,
        session_id: str,
        tier: Tier,
        requested_units: int,
        override_key: Optional[str] = None,
    ) -> AdmissionDecision:
        """Decide whether a chat completion of `requested_units` may run.

        The request is recorded by the rate limiter as soon as it passes
        the rate check, even when the quota check denies it afterwards.
        """
        rate_limit = self.rate_limiter.acquire(caller_id, tier, session_id)
        if not rate_limit.allowed:
            record_admission("rate", False)
            return AdmissionDecision(allowed=False, tier=tier, rate_limit=rate_limit)
        record_admission("rate", True)

        quota = self.quota_tracker.check_limits(
            caller_id, session_id, requested_units, override_key
        )
        record_admission("tokens", quota.allowed)
        return AdmissionDecision(
            allowed=quota.allowed, tier=tier, rate_limit=rate_limit, quota=quota
        )

    def commit_completion(
        self, caller_id: str, session_id: str, actual_units: int
    ) -> None:
        """Commit tokens of a completion that finished successfully."""
        self.quota_tracker.track_usage(caller_id, session_id, actual_units)

    def cleanup(self) -> CleanupReport:
        """Run one pass of periodic housekeeping."""
        report = CleanupReport(
            expired_sessions=self.quota_tracker.cleanup_expired_sessions(),
            idle_rate_records=self.rate_limiter.cleanup(),
            finished_jobs=self.job_queue.cleanup(),
        )
        self.hit_log.roll_over()
        return report

    def refresh_config(self, configuration: QuotaHandlersConfiguration) -> None:
        """Push new ceilings into all components, keeping their state."""
        self.quota_tracker.refresh_config(
            configuration.tokens,
            configuration.ocr,
            configuration.admin,
            timedelta(seconds=configuration.session_ttl),
        )
        self.rate_limiter.refresh_config(configuration.rate_limits)
        self.job_queue.refresh_config(configuration.ocr)
        if configuration.hit_log.capacity != self.hit_log.capacity:
            self.hit_log.resize(configuration.hit_log.capacity)
        self.configuration = configuration
        setup_limit_metrics(configuration)
        logger.info("Admission configuration refreshed")
