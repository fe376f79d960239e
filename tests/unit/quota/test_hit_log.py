"""Unit tests for the hit log."""

from datetime import UTC, datetime

from models.config import Tier
from quota.hit_log import HitLog
from quota.results import AdmissionResult, DenialKind, RateLimitResult
from utils.suid import check_prefixed_id


def test_log_hit(hit_log: HitLog, clock) -> None:
    """Test that one hit is recorded with all attributes."""
    entry = hit_log.log_hit(
        "user:alice",
        "session-1",
        DenialKind.DAILY,
        limit=100000,
        used=99000,
        remaining=1000,
        message="Daily limit",
        metadata={"requested_units": 2000},
    )
    assert check_prefixed_id(entry.id, "lh")
    assert entry.timestamp == clock()
    assert entry.caller_id == "user:alice"
    assert entry.session_id == "session-1"
    assert entry.denial_kind == DenialKind.DAILY
    assert entry.metadata == {"requested_units": 2000}

    stats = hit_log.get_stats()
    assert stats.total_hits == 1
    assert stats.hits_today == 1
    assert stats.recent_hits == [entry]


def test_log_hit_increments_metric(hit_log: HitLog, mocker) -> None:
    """Test that every hit is counted by Prometheus counter."""
    counter = mocker.patch("metrics.admission_denials_total")
    hit_log.log_hit("ip:1.2.3.4", "", DenialKind.THROTTLE, limit=2000, used=100)
    counter.labels.assert_called_once_with("throttle")
    counter.labels.return_value.inc.assert_called_once()


def test_log_denial_ignores_allowed_results(hit_log: HitLog) -> None:
    """Test that admitted results are not recorded."""
    assert hit_log.log_denial("anonymous", "", AdmissionResult(allowed=True)) is None
    assert (
        hit_log.log_denial(
            "anonymous", "", RateLimitResult(allowed=True, tier=Tier.DEMO)
        )
        is None
    )
    assert hit_log.get_stats().total_hits == 0


def test_log_denial(hit_log: HitLog) -> None:
    """Test that denied results are recorded."""
    result = RateLimitResult(
        allowed=False,
        tier=Tier.DEMO,
        denial_kind=DenialKind.REQUESTS_PER_MINUTE,
        limit=10,
        used=10,
        remaining=0,
        message="Rate limit exceeded",
    )
    entry = hit_log.log_denial("anonymous", "s", result, metadata={"tier": "demo"})
    assert entry is not None
    assert entry.limit == 10
    assert entry.used == 10
    assert entry.message == "Rate limit exceeded"
    assert entry.metadata == {"tier": "demo"}


def test_capacity_eviction(clock) -> None:
    """Test that the oldest entries are evicted first."""
    hit_log = HitLog(capacity=3, clock=clock)
    for i in range(5):
        hit_log.log_hit(f"caller-{i}", "", DenialKind.DAILY, limit=10, used=i)

    recent = hit_log.get_recent()
    assert [entry.caller_id for entry in recent] == ["caller-4", "caller-3", "caller-2"]
    stats = hit_log.get_stats()
    assert stats.total_hits == 3
    # daily aggregate counts evicted entries too
    assert stats.hits_today == 5


def test_resize_keeps_newest_entries(hit_log: HitLog) -> None:
    """Test shrinking of the hit log."""
    for i in range(5):
        hit_log.log_hit(f"caller-{i}", "", DenialKind.DAILY, limit=10, used=i)
    hit_log.resize(2)
    assert hit_log.capacity == 2
    assert [entry.caller_id for entry in hit_log.get_recent()] == [
        "caller-4",
        "caller-3",
    ]


def test_daily_aggregate_rolls_over(hit_log: HitLog, clock) -> None:
    """Test that hits today are reset after UTC midnight."""
    hit_log.log_hit("a", "", DenialKind.DAILY, limit=10, used=10)
    hit_log.log_hit("b", "", DenialKind.DAILY, limit=10, used=10)
    assert hit_log.get_stats().hits_today == 2

    clock.advance(hours=13)
    stats = hit_log.get_stats()
    assert stats.hits_today == 0
    assert stats.total_hits == 2

    hit_log.log_hit("c", "", DenialKind.DAILY, limit=10, used=10)
    assert hit_log.get_stats().hits_today == 1


def test_counts_by_kind_and_caller_roll_over(hit_log: HitLog, clock) -> None:
    """Test that counts by kind and by caller cover the current day only."""
    hit_log.log_hit("a", "", DenialKind.DAILY, limit=10, used=10)
    hit_log.log_hit("a", "", DenialKind.DAILY, limit=10, used=10)
    assert hit_log.most_hit_kind() == DenialKind.DAILY

    clock.advance(days=1)
    hit_log.log_hit("b", "", DenialKind.THROTTLE, limit=10, used=1)

    stats = hit_log.get_stats()
    assert stats.total_hits == 3
    assert stats.hits_today == 1
    assert stats.hits_by_kind == {"throttle": 1}
    assert stats.hits_by_caller == {"b": 1}
    assert hit_log.most_hit_kind() == DenialKind.THROTTLE

    distribution = hit_log.hourly_distribution()
    assert sum(distribution) == 1
    assert distribution[12] == 1


def test_counts_reset_without_new_hits(hit_log: HitLog, clock) -> None:
    """Test that yesterday's counts are not reported after midnight."""
    hit_log.log_hit("a", "", DenialKind.MONTHLY, limit=10, used=10)
    clock.advance(hours=13)

    stats = hit_log.get_stats()
    assert stats.hits_by_kind == {}
    assert stats.hits_by_caller == {}
    assert hit_log.most_hit_kind() is None
    assert sum(hit_log.hourly_distribution()) == 0
    # entries themselves are kept
    assert len(hit_log.get_recent()) == 1


def test_roll_over(hit_log: HitLog, clock) -> None:
    """Test explicit roll over called by the cleanup."""
    hit_log.log_hit("a", "", DenialKind.DAILY, limit=10, used=10)
    hit_log.roll_over()
    assert hit_log.get_stats().hits_today == 1
    clock.advance(days=1)
    hit_log.roll_over()
    assert hit_log.get_stats().hits_today == 0


def test_queries(hit_log: HitLog) -> None:
    """Test selection of entries by caller and by kind."""
    hit_log.log_hit("a", "", DenialKind.DAILY, limit=10, used=10)
    hit_log.log_hit("b", "", DenialKind.THROTTLE, limit=10, used=1)
    hit_log.log_hit("a", "", DenialKind.THROTTLE, limit=10, used=2)

    by_caller = hit_log.get_by_caller("a")
    assert [entry.denial_kind for entry in by_caller] == [
        DenialKind.THROTTLE,
        DenialKind.DAILY,
    ]
    by_kind = hit_log.get_by_kind(DenialKind.THROTTLE)
    assert [entry.caller_id for entry in by_kind] == ["a", "b"]
    assert len(hit_log.get_recent(limit=1)) == 1
    assert len(hit_log.get_by_caller("a", limit=1)) == 1

    stats = hit_log.get_stats()
    assert stats.hits_by_kind == {"daily": 1, "throttle": 2}
    assert stats.hits_by_caller == {"a": 2, "b": 1}


def test_clear(hit_log: HitLog) -> None:
    """Test that clearing drops entries and the daily aggregate."""
    hit_log.log_hit("a", "", DenialKind.DAILY, limit=10, used=10)
    hit_log.clear()
    stats = hit_log.get_stats()
    assert stats.total_hits == 0
    assert stats.hits_today == 0
    assert stats.hits_by_kind == {}
    assert stats.hits_by_caller == {}
    assert hit_log.most_hit_kind() is None


def test_callers_approaching_limits(hit_log: HitLog) -> None:
    """Test the analytics of callers close to their ceilings."""
    hit_log.log_hit("close", "", DenialKind.DAILY, limit=100, used=85)
    hit_log.log_hit("far", "", DenialKind.DAILY, limit=100, used=10)
    hit_log.log_hit("exact", "", DenialKind.DAILY, limit=100, used=80)
    hit_log.log_hit("uncapped", "", DenialKind.FILE_TYPE, limit=0, used=0)
    hit_log.log_hit("close", "", DenialKind.MONTHLY, limit=100, used=99)

    assert hit_log.callers_approaching_limits() == ["close", "exact"]
    assert hit_log.callers_approaching_limits(threshold=90) == ["close"]


def test_most_hit_kind(hit_log: HitLog) -> None:
    """Test the most frequent denial kind."""
    hit_log.log_hit("a", "", DenialKind.DAILY, limit=10, used=10)
    hit_log.log_hit("a", "", DenialKind.THROTTLE, limit=10, used=1)
    hit_log.log_hit("b", "", DenialKind.THROTTLE, limit=10, used=1)
    assert hit_log.most_hit_kind() == DenialKind.THROTTLE


def test_hourly_distribution(clock) -> None:
    """Test distribution of entries over hours of day."""
    clock.now = datetime(2025, 3, 14, 3, 15, tzinfo=UTC)
    hit_log = HitLog(capacity=10, clock=clock)
    hit_log.log_hit("a", "", DenialKind.DAILY, limit=10, used=10)
    clock.advance(minutes=30)
    hit_log.log_hit("a", "", DenialKind.DAILY, limit=10, used=10)
    clock.advance(hours=10)
    hit_log.log_hit("a", "", DenialKind.DAILY, limit=10, used=10)

    distribution = hit_log.hourly_distribution()
    assert len(distribution) == 24
    assert distribution[3] == 2
    assert distribution[13] == 1
    assert sum(distribution) == 3
