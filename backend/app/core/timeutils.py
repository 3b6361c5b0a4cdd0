"""
Datetime helpers.

All domain arithmetic is done on timezone-aware UTC datetimes. Values read
back from SQLite come out naive, so everything passes through ensure_utc
before it is compared.
"""

import math
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return value as an aware UTC datetime (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ceil_hours_between(start: datetime, end: datetime) -> int:
    """Whole hours from start to end, any partial hour counted as a full one."""
    seconds = (ensure_utc(end) - ensure_utc(start)).total_seconds()
    return math.ceil(seconds / 3600)
