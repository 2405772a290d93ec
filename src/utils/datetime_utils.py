"""Datetime utilities for timezone-aware UTC timestamps.

SQLite hands DateTime columns back without tzinfo, so values read from the
store are normalized with as_utc() before any arithmetic against utc_now().

Usage:
    from src.utils.datetime_utils import utc_now, age_in_days

    created_at = Column(DateTime, default=utc_now)
    age = age_in_days(lot.created_at)
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def age_in_days(created_at: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole days elapsed since created_at.

    Args:
        created_at: Creation timestamp (naive values are taken as UTC)
        now: Reference time (default: utc_now())

    Returns:
        Non-negative number of whole days
    """
    reference = as_utc(now) if now is not None else utc_now()
    delta = reference - as_utc(created_at)
    return max(delta.days, 0)
