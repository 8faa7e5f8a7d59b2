from datetime import datetime, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo

from oonjai.core.config import settings


def get_zoneinfo(tz_name: Optional[str] = None) -> ZoneInfo:
    """Resolve a zone name, falling back to DEFAULT_TIMEZONE."""
    return ZoneInfo(tz_name or settings.DEFAULT_TIMEZONE)


def to_utc_aware(dt: datetime | None) -> datetime | None:
    """
    Normalize any datetime to UTC-aware (tzinfo=UTC).
    - Aware datetimes are converted to UTC
    - Naive datetimes are assumed UTC and tz attached (SQLite drops tzinfo on read)
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=dt_timezone.utc)
    return dt.astimezone(dt_timezone.utc)
