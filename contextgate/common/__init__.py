"""
Shared helpers for contextgate.
"""

from .utils import (
    generate_id,
    get_current_time,
    parse_iso_timestamp,
    coerce_datetime,
    is_expired,
)

__all__ = [
    "generate_id",
    "get_current_time",
    "parse_iso_timestamp",
    "coerce_datetime",
    "is_expired",
]
