"""Time helpers.

All timestamps are stored as naive UTC datetimes.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise an aware or naive datetime to naive UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def elapsed_ms(start: datetime, end: Optional[datetime] = None) -> int:
    """Whole milliseconds between two datetimes."""
    end = end or utcnow()
    return int((end - start).total_seconds() * 1000)
