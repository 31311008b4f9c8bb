"""
UTC helpers.

Every timestamp the service stores or compares is timezone-aware UTC.
SQLite returns naive datetimes even for ``DateTime(timezone=True)``
columns, so values read back from the database go through ``to_utc``
before they are compared with ``utc_now()``.
"""

from datetime import datetime, timezone
from typing import Optional

UTC = timezone.utc


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_utc(dt: datetime) -> datetime:
    """Treat a naive value as UTC; convert an aware one to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_utc_optional(dt: Optional[datetime]) -> Optional[datetime]:
    # Nullable columns such as expires_at
    return None if dt is None else to_utc(dt)
