"""UTC helpers.

The database stores **naive** UTC datetimes; every timestamp that crosses the
API boundary is rendered as ISO-8601 with a trailing ``Z``.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC time as a naive (tzinfo=None) datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_date(value: Optional[datetime] = None) -> str:
    """Calendar date (``YYYY-MM-DD``) used to key daily spend buckets."""
    return (value or utcnow()).strftime("%Y-%m-%d")


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return to_naive_utc(value).isoformat() + "Z"
