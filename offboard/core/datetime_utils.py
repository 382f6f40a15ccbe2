"""Centralized datetime utilities for consistent timezone handling.

All stored timestamps are naive UTC datetimes (SQLAlchemy models use naive
UTC). Operators enter schedules in their own IANA timezone; these helpers
normalize that input before it reaches the store.

Usage:
    from offboard.core.datetime_utils import utc_now, to_naive_utc, localize

    # Current time
    now = utc_now()

    # Operator typed 09:00 in New York
    scheduled_at = localize(datetime(2026, 3, 2, 9, 0), "America/New_York")
"""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def is_valid_timezone(tz_name: str) -> bool:
    """Check if a timezone name is a valid IANA identifier."""
    try:
        ZoneInfo(tz_name)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def localize(dt: datetime, timezone: str = "UTC") -> datetime:
    """Interpret a datetime in the operator's timezone and return naive UTC.

    Aware datetimes keep their own offset; naive ones are read as wall-clock
    time in ``timezone``. DST gaps and folds resolve the way zoneinfo does
    (fold=0, i.e. the first occurrence).

    Args:
        dt: Datetime entered by the operator
        timezone: IANA timezone string (e.g., "America/New_York")

    Returns:
        Naive UTC datetime
    """
    if dt.tzinfo is not None:
        return to_naive_utc(dt)
    return to_naive_utc(dt.replace(tzinfo=ZoneInfo(timezone)))
