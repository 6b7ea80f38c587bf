"""DateTime utility functions for TaskWise."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive datetimes are assumed to already be in UTC (SQLite drops tzinfo
    on the way back out).
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_deadline(dt: datetime, timezone_name: str = 'UTC') -> str:
    """
    Format a deadline for display, e.g. "Mar 05 14:30".

    Args:
        dt: Deadline (aware or naive UTC)
        timezone_name: IANA timezone name; invalid names fall back to UTC

    Returns:
        Short month/day/time string in the target timezone
    """
    dt = ensure_utc(dt)
    try:
        local_dt = dt.astimezone(ZoneInfo(timezone_name))
    except ZoneInfoNotFoundError:
        local_dt = dt
    return local_dt.strftime('%b %d %H:%M')


def format_relative_deadline(deadline: datetime, now: datetime) -> str:
    """
    Describe a deadline relative to now.

    Examples:
        >>> now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        >>> format_relative_deadline(datetime(2025, 1, 3, tzinfo=timezone.utc), now)
        'Due in 2 days'
        >>> format_relative_deadline(datetime(2024, 12, 31, 21, tzinfo=timezone.utc), now)
        'Overdue by 3 hours'
    """
    delta = ensure_utc(deadline) - ensure_utc(now)
    seconds = abs(delta.total_seconds())

    if seconds < 60:
        amount = "less than a minute"
    else:
        for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
            if seconds >= size:
                count = int(seconds // size)
                amount = f"{count} {unit}{'s' if count != 1 else ''}"
                break

    if delta.total_seconds() < 0:
        return f"Overdue by {amount}"
    return f"Due in {amount}"
