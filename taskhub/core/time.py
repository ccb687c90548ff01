"""UTC time helpers.

The whole system works in UTC: the API accepts and returns ISO-8601 with a
``Z`` suffix, the database stores UTC, clients convert to local time.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

MINUTES_PER_DAY = 24 * 60


def now_utc() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Tag naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso_zulu(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as ISO-8601 UTC with a ``Z`` suffix."""
    value = ensure_utc(value)
    if value is None:
        return None
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def minute_bounds(value: datetime) -> tuple[datetime, datetime]:
    """Start and end of the UTC minute containing ``value``."""
    start = ensure_utc(value).replace(second=0, microsecond=0)
    return start, start + timedelta(minutes=1) - timedelta(microseconds=1)


def iso_day_of_week(value: datetime) -> int:
    """Day of week 1-7, Monday = 1."""
    return value.isoweekday()


def _minutes_of_day(hhmm: str) -> int:
    hours, minutes = hhmm.strip().split(":")[:2]
    return int(hours) * 60 + int(minutes)


def is_time_match(current: str, configured: str, tolerance_minutes: int = 5) -> bool:
    """Whether ``current`` (HH:MM) is within the tolerance of ``configured``.

    Distance wraps around midnight, so 00:02 is four minutes from 23:58.
    """
    diff = abs(_minutes_of_day(current) - _minutes_of_day(configured))
    diff = min(diff, MINUTES_PER_DAY - diff)
    return diff <= tolerance_minutes
