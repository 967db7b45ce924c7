"""
Clock helpers.

All persisted timestamps are naive UTC datetimes.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching the stored column values."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_timestamp(moment: datetime) -> float:
    """POSIX timestamp of a naive UTC datetime."""
    return moment.replace(tzinfo=timezone.utc).timestamp()
