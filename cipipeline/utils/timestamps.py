"""UTC timestamp helpers."""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC.

    Example:
        >>> ensure_utc(datetime(2026, 10, 18, 12, 0)).tzinfo == timezone.utc
        True
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: Optional[datetime]) -> str:
    """Render a datetime for build reports, e.g. ``2026-10-18 12:00:00 UTC``."""
    if dt is None:
        return "N/A"
    return ensure_utc(dt).strftime("%Y-%m-%d %H:%M:%S UTC")
