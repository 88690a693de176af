"""Pure time calculations for assignment windows."""

from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Optional

from driver_assignments.models.assignment import TimeRemaining
from driver_assignments.models.assignment import ensure_utc

SECONDS_PER_DAY = 86400
SECONDS_PER_HOUR = 3600
SECONDS_PER_MINUTE = 60

EXPIRED = TimeRemaining(days=0, hours=0, minutes=0, seconds=0, is_expired=True)


def utc_now() -> datetime:
    """Current wall-clock time in UTC."""
    return datetime.now(timezone.utc)


def calculate_time_remaining(end_datetime: datetime, now: Optional[datetime] = None) -> TimeRemaining:
    """
    Decompose the time left until ``end_datetime`` into days, hours, minutes and seconds.

    Components are floored (partial seconds are dropped). Once ``now >= end_datetime``
    every component is 0 and ``is_expired`` is True.

    Parameters
    ----------
    end_datetime : datetime
        End of the assignment window; naive values are treated as UTC
    now : datetime, optional
        Reference instant, defaults to the current UTC time

    Returns
    -------
    TimeRemaining
    """
    now = ensure_utc(now) if now is not None else utc_now()
    delta = ensure_utc(end_datetime) - now

    if delta <= timedelta(0):
        return EXPIRED

    total_seconds = int(delta.total_seconds() // 1)
    days, rest = divmod(total_seconds, SECONDS_PER_DAY)
    hours, rest = divmod(rest, SECONDS_PER_HOUR)
    minutes, seconds = divmod(rest, SECONDS_PER_MINUTE)
    return TimeRemaining(days=days, hours=hours, minutes=minutes, seconds=seconds, is_expired=False)


def extend_end_datetime(end_datetime: datetime, total_minutes: int) -> datetime:
    """Exact end time after adding ``total_minutes`` (no rounding)."""
    return ensure_utc(end_datetime) + timedelta(minutes=total_minutes)


def format_time_remaining(remaining: TimeRemaining, with_seconds: bool = False) -> str:
    """Banner label such as ``01D 04H 30M``; expired windows render all zeros."""
    if remaining.is_expired:
        label = "00D 00H 00M"
        return f"{label} 00S" if with_seconds else label

    label = f"{remaining.days:02d}D {remaining.hours:02d}H {remaining.minutes:02d}M"
    if with_seconds:
        label = f"{label} {remaining.seconds:02d}S"
    return label
