# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for the memory subsystem.

All timestamps are stored in UTC and all Python datetimes are timezone-aware.
Some async drivers (SQLite in tests) hand back naive datetimes, so values read
from storage go through ensure_utc() before any arithmetic.

Usage:
------
    from tutor_memory.utils.datetime import utc_now

    created_at: datetime = Field(default_factory=utc_now)
"""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Timezone-aware datetime representing current UTC time.
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Naive datetimes are assumed to already be in UTC.

    Args:
        dt: Datetime to convert (may be naive or aware).

    Returns:
        Timezone-aware UTC datetime, or None if input is None.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def days_ago(days: int | float) -> datetime:
    """Get a datetime N days ago from now."""
    return utc_now() - timedelta(days=days)


def hours_ago(hours: int | float) -> datetime:
    """Get a datetime N hours ago from now."""
    return utc_now() - timedelta(hours=hours)


def age_in_days(since: datetime, reference: datetime | None = None) -> float:
    """Fractional days elapsed between `since` and `reference` (default now).

    Never negative; timestamps in the future count as age zero.

    Args:
        since: Start of the interval.
        reference: End of the interval. Defaults to utc_now().

    Returns:
        Elapsed days as a float.
    """
    end = ensure_utc(reference) or utc_now()
    start = ensure_utc(since)
    return max((end - start).total_seconds() / 86400.0, 0.0)


def time_ago(dt: datetime, reference: datetime | None = None) -> str:
    """Format a past datetime as a compact relative string.

    Args:
        dt: Past datetime.
        reference: Point of comparison. Defaults to utc_now().

    Returns:
        One of "just now", "Nm ago", "Nh ago", "Nd ago" or "Nw ago".

    Example:
        >>> time_ago(hours_ago(3))
        '3h ago'
    """
    end = ensure_utc(reference) or utc_now()
    seconds = max((end - ensure_utc(dt)).total_seconds(), 0.0)

    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)

    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return f"{days // 7}w ago"


def format_iso(dt: datetime | None) -> str | None:
    """Format a datetime as ISO 8601 string (UTC)."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()
