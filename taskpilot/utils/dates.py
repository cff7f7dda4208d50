"""
Date Helpers
============

Due dates arrive from the model and the store as ISO 8601 strings, either
date-only ("2025-10-01") or date-time ("2025-10-01T10:00:00Z"). All
arithmetic is done on timezone-aware UTC datetimes; a date-only value means
midnight UTC of that day.
"""

import math
from datetime import date, datetime, time, timedelta, timezone

SECONDS_PER_DAY = 86400


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def is_date_only(value: str) -> bool:
    return len(value.strip()) == 10


def parse_datetime(value: str | datetime) -> datetime:
    """
    Parse an ISO 8601 date or date-time into an aware UTC datetime.

    Naive date-times are assumed to be UTC.

    Raises:
        ValueError: If the value is not ISO 8601
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if is_date_only(text):
            day = date.fromisoformat(text)
            return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def days_until(due: datetime, now: datetime) -> int:
    """Whole days until due, rounded up: ceil((due - now) / 1 day)."""
    return math.ceil((due - now).total_seconds() / SECONDS_PER_DAY)


def shift_due(value: str, days: int) -> str:
    """Move a due value by a number of days, keeping its date-only or date-time form."""
    shifted = parse_datetime(value) + timedelta(days=days)
    if is_date_only(value):
        return shifted.date().isoformat()
    return shifted.isoformat()


def parse_hhmm(value: str) -> time:
    """
    Parse a "HH:MM" wall-clock time.

    Raises:
        ValueError: If the value is not HH:MM
    """
    hours, _, minutes = value.strip().partition(":")
    return time(int(hours), int(minutes))


def at_time(day: date, wall: time) -> datetime:
    """Combine a date and a wall-clock time into an aware UTC datetime."""
    return datetime.combine(day, wall, tzinfo=timezone.utc)


def within_hours(moment: datetime, start: time, end: time) -> bool:
    """True if the wall-clock part of moment falls in [start, end]."""
    wall = moment.timetz().replace(tzinfo=None)
    return start <= wall <= end
