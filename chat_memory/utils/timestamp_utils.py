"""
Timestamp utilities for consistent time handling across the system.

Stored memories carry epoch milliseconds in ``timestamp`` and an ISO-8601
string in ``created_at``; buffered events carry aware UTC datetimes.
"""

import time
from datetime import datetime, timezone
from typing import Optional

MS_PER_HOUR = 60 * 60 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(timestamp_ms: Optional[int] = None) -> str:
    """Convert epoch milliseconds to an ISO-8601 UTC string.

    Args:
        timestamp_ms: Epoch milliseconds (optional, uses current time if None)

    Returns:
        ISO-8601 string with millisecond precision and a ``Z`` suffix
    """
    if timestamp_ms is None:
        timestamp_ms = now_ms()
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def format_event_time(dt: datetime) -> str:
    """Format an event datetime the way transcripts show it."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_iso(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 string, tolerating a trailing ``Z``."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def age_hours(timestamp_ms: int, now: Optional[int] = None) -> float:
    if now is None:
        now = now_ms()
    return (now - timestamp_ms) / MS_PER_HOUR


def age_days(timestamp_ms: int, now: Optional[int] = None) -> float:
    if now is None:
        now = now_ms()
    return (now - timestamp_ms) / MS_PER_DAY
