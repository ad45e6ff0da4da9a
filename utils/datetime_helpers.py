"""
Datetime helper utilities to keep timezone handling consistent.

All model columns store timezone-naive UTC datetimes (DateTime(timezone=False)).
API responses render them as ISO-8601 strings with a trailing 'Z'.
"""

from datetime import datetime, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def ensure_naive_datetime(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert timezone-aware datetime to naive UTC datetime.

    Args:
        dt: Datetime that may be timezone-aware or naive

    Returns:
        Naive datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)

    return dt


def get_naive_utc_now() -> datetime:
    """Current UTC time without timezone info - use for every model timestamp"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_millis(dt: Optional[datetime] = None) -> int:
    """Milliseconds since the epoch for a naive UTC datetime (now when omitted)"""
    dt = ensure_naive_datetime(dt) or get_naive_utc_now()
    return int(dt.replace(tzinfo=timezone.utc).timestamp() * 1000)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Render a stored datetime for JSON responses"""
    if dt is None:
        return None
    naive = ensure_naive_datetime(dt)
    return naive.isoformat(timespec="milliseconds") + "Z"
