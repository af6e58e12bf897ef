"""
Timezone-aware datetime utilities.

All datetime operations should use these helpers to ensure consistent
timezone handling across the codebase.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Use this instead of datetime.utcnow() which returns naive datetime.
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def seconds_since(value: Optional[datetime], now: Optional[datetime] = None) -> float:
    """
    Seconds elapsed since ``value``.

    Returns 0 for None so that missing timestamps never count as stale.
    """
    if value is None:
        return 0.0
    now = ensure_utc(now) if now else utc_now()
    return (now - ensure_utc(value)).total_seconds()


def to_iso_z(value: Optional[datetime]) -> Optional[str]:
    """Format as ISO 8601 with a Z suffix, e.g. 2024-01-13T12:00:00Z."""
    if value is None:
        return None
    return ensure_utc(value).isoformat().replace("+00:00", "Z")
