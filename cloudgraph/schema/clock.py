"""Time source used for every server-managed timestamp."""

from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]

ONE_MICROSECOND = timedelta(microseconds=1)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_after(now: datetime, previous: datetime | None) -> datetime:
    """Return `now`, or one microsecond past `previous` if the clock lags.

    Keeps `last_seen_at` strictly increasing across cycles even when two
    cycles land on the same clock tick.
    """
    if previous is not None and now <= previous:
        return previous + ONE_MICROSECOND
    return now
