"""Time source shared by all admission components.

Every component receives its clock as a constructor argument, so tests can
drive day and month rollovers without waiting for them.
"""

from datetime import UTC, datetime, timedelta
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return current time as timezone-aware UTC datetime."""
    return datetime.now(UTC)


def start_of_day(now: datetime) -> datetime:
    """Return UTC midnight that starts the day of the given instant."""
    return now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)


def next_utc_midnight(now: datetime) -> datetime:
    """Return first UTC midnight strictly after the given instant."""
    return start_of_day(now) + timedelta(days=1)


def first_of_next_month(now: datetime) -> datetime:
    """Return 00:00 UTC on the first day of the month following the instant."""
    day = start_of_day(now)
    if day.month == 12:
        return day.replace(year=day.year + 1, month=1, day=1)
    return day.replace(month=day.month + 1, day=1)
