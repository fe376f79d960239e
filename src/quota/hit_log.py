"""Bounded in-memory log of admission denials.

Every time a caller hits a limit, an entry is stored here. The log keeps a
fixed number of the most recent entries (older ones are evicted first) and
a daily aggregate with the number of hits since the last UTC midnight,
counted by denial kind and by caller.
The daily aggregate is rolled over lazily, whenever the log is touched
after midnight.
"""

from collections import Counter, deque
from datetime import datetime
from threading import RLock
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

import constants
import metrics
from log import get_logger
from quota.clock import Clock, next_utc_midnight, utc_now
from quota.results import AdmissionResult, DenialKind, RateLimitResult
from utils.suid import prefixed_id

logger = get_logger(__name__)


class HitLogEntry(BaseModel):
    """One recorded denial."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    caller_id: str
    session_id: str
    denial_kind: DenialKind
    limit: int
    used: int
    remaining: int = 0
    message: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class HitLogStats(BaseModel):
    """Aggregated view over the hit log."""

    total_hits: int
    hits_today: int
    hits_by_kind: dict[str, int]
    hits_by_caller: dict[str, int]
    recent_hits: list[HitLogEntry]


class HitLog:
    """Bounded FIFO of denials, newest entries first."""

    def __init__(
        self, capacity: int = constants.DEFAULT_HIT_LOG_CAPACITY, clock: Clock = utc_now
    ) -> None:
        """Initialize empty hit log."""
        self._clock = clock
        self._lock = RLock()
        self._entries: deque[HitLogEntry] = deque(maxlen=capacity)
        self._hits_today = 0
        self._by_kind_today: Counter[DenialKind] = Counter()
        self._by_caller_today: Counter[str] = Counter()
        self._day_resets_at = next_utc_midnight(clock())

    @property
    def capacity(self) -> int:
        """Maximum number of entries kept."""
        return self._entries.maxlen or 0

    def resize(self, capacity: int) -> None:
        """Change capacity, keeping the newest entries."""
        with self._lock:
            self._entries = deque(self._entries, maxlen=capacity)

    def log_hit(  # pylint: disable=too-many-arguments,too-many-positional-arguments
        self,
        caller_id: str,
        session_id: str,
        denial_kind: DenialKind,
        limit: int,
        used: int,
        remaining: int = 0,
        message: str = "",
        metadata: Optional[dict[str, Any]] = None,
    ) -> HitLogEntry:
        """Record a denial and return the stored entry."""
        with self._lock:
            now = self._clock()
            self._roll_over(now)
            entry = HitLogEntry(
                id=prefixed_id("lh"),
                timestamp=now,
                caller_id=caller_id,
                session_id=session_id,
                denial_kind=denial_kind,
                limit=limit,
                used=used,
                remaining=remaining,
                message=message,
                metadata=metadata or {},
            )
            self._entries.appendleft(entry)
            self._hits_today += 1
            self._by_kind_today[denial_kind] += 1
            self._by_caller_today[caller_id] += 1

        metrics.admission_denials_total.labels(denial_kind.value).inc()
        logger.warning(
            "Limit hit: %s by %s (used %d of %d)",
            denial_kind.value,
            caller_id,
            used,
            limit,
        )
        return entry

    def log_denial(
        self,
        caller_id: str,
        session_id: str,
        result: AdmissionResult | RateLimitResult,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[HitLogEntry]:
        """Record a denied result, ignoring admitted ones."""
        if result.allowed or result.denial_kind is None:
            return None
        return self.log_hit(
            caller_id,
            session_id,
            result.denial_kind,
            limit=result.limit or 0,
            used=result.used,
            remaining=result.remaining or 0,
            message=result.message or "",
            metadata=metadata,
        )

    def get_stats(self) -> HitLogStats:
        """Return totals and the most recent entries.

        Counts by kind and by caller cover the current UTC day only.
        """
        with self._lock:
            self._roll_over(self._clock())
            entries = list(self._entries)
            hits_today = self._hits_today
            by_kind = {
                kind.value: count for kind, count in self._by_kind_today.items()
            }
            by_caller = dict(self._by_caller_today)
        return HitLogStats(
            total_hits=len(entries),
            hits_today=hits_today,
            hits_by_kind=by_kind,
            hits_by_caller=by_caller,
            recent_hits=entries[: constants.HIT_LOG_STATS_RECENT],
        )

    def get_recent(
        self, limit: int = constants.HIT_LOG_DEFAULT_QUERY_SIZE
    ) -> list[HitLogEntry]:
        """Return up to `limit` newest entries."""
        with self._lock:
            return list(self._entries)[:limit]

    def get_by_caller(
        self, caller_id: str, limit: int = constants.HIT_LOG_DEFAULT_CALLER_QUERY_SIZE
    ) -> list[HitLogEntry]:
        """Return up to `limit` newest entries of one caller."""
        with self._lock:
            entries = [entry for entry in self._entries if entry.caller_id == caller_id]
        return entries[:limit]

    def get_by_kind(
        self, denial_kind: DenialKind, limit: int = constants.HIT_LOG_DEFAULT_QUERY_SIZE
    ) -> list[HitLogEntry]:
        """Return up to `limit` newest entries of one denial kind."""
        with self._lock:
            entries = [
                entry for entry in self._entries if entry.denial_kind == denial_kind
            ]
        return entries[:limit]

    def clear(self) -> None:
        """Drop all entries and the daily aggregate."""
        with self._lock:
            self._entries.clear()
            self._hits_today = 0
            self._by_kind_today.clear()
            self._by_caller_today.clear()
            self._day_resets_at = next_utc_midnight(self._clock())
        logger.info("Hit log cleared")

    def roll_over(self) -> None:
        """Reset the daily aggregate when UTC midnight has passed."""
        with self._lock:
            self._roll_over(self._clock())

    def callers_approaching_limits(
        self, threshold: int = constants.HIT_LOG_APPROACHING_THRESHOLD
    ) -> list[str]:
        """Return callers whose recent hits used at least `threshold` percent.

        Only the newest `HIT_LOG_APPROACHING_WINDOW` entries are read, regardless
        of the day they were logged; the daily aggregate is not used.
        """
        with self._lock:
            recent = list(self._entries)[: constants.HIT_LOG_APPROACHING_WINDOW]
        callers: dict[str, None] = {}
        for entry in recent:
            if entry.limit > 0 and entry.used * 100 >= entry.limit * threshold:
                callers[entry.caller_id] = None
        return list(callers)

    def most_hit_kind(self) -> Optional[DenialKind]:
        """Return denial kind hit most often today, None when there was no hit."""
        with self._lock:
            self._roll_over(self._clock())
            most_common = self._by_kind_today.most_common(1)
        if not most_common:
            return None
        return most_common[0][0]

    def hourly_distribution(self) -> list[int]:
        """Return number of today's entries per UTC hour of day (24 buckets)."""
        buckets = [0] * 24
        with self._lock:
            today = self._clock().date()
            for entry in self._entries:
                if entry.timestamp.date() == today:
                    buckets[entry.timestamp.hour] += 1
        return buckets

    def _roll_over(self, now: datetime) -> None:
        if now >= self._day_resets_at:
            logger.debug("Resetting daily hit counters")
            self._hits_today = 0
            self._by_kind_today.clear()
            self._by_caller_today.clear()
            self._day_resets_at = next_utc_midnight(now)
