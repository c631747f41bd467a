"""
Common utilities and helper functions for contextgate.
"""

import uuid
from datetime import datetime
from typing import Any, Optional, Union


def generate_id(prefix: str = "") -> str:
    """Generate a unique identifier with optional prefix."""
    unique_id = uuid.uuid4().hex
    return f"{prefix}{unique_id}" if prefix else unique_id


def get_current_time() -> datetime:
    """Current local time as a naive datetime."""
    return datetime.now()


def parse_iso_timestamp(timestamp_str: str) -> datetime:
    """
    Parse ISO 8601 timestamp string to datetime.

    Args:
        timestamp_str: ISO 8601 timestamp string

    Returns:
        Parsed datetime object
    """
    return datetime.fromisoformat(timestamp_str.replace('Z', '+00:00'))


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive local time; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def coerce_datetime(value: Union[str, datetime, int, float]) -> datetime:
    """
    Coerce an ISO string, epoch seconds or datetime to a naive local datetime.

    Raises:
        ValueError, TypeError: value cannot be interpreted as an instant
    """
    if isinstance(value, datetime):
        return to_local_naive(value)
    if isinstance(value, str):
        return to_local_naive(parse_iso_timestamp(value))
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value)
        except (OverflowError, OSError) as e:
            raise ValueError(f"Timestamp out of range: {value!r}") from e
    raise TypeError(f"Cannot interpret {value!r} as a timestamp")


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """A record expires once its expiry instant is reached; no expiry never expires."""
    if expires_at is None:
        return False
    return to_local_naive(expires_at) <= (now or get_current_time())


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    """Serialize an optional datetime."""
    return value.isoformat() if value else None


def datetime_or_none(value: Any) -> Optional[datetime]:
    """Deserialize an optional ISO timestamp."""
    if value is None:
        return None
    return coerce_datetime(value)
