"""
Utility helpers for contextgate.
"""

from .config import (
    get_config_value,
    parse_duration_string,
    load_config_file,
    as_list,
    as_duration,
)

__all__ = [
    "get_config_value",
    "parse_duration_string",
    "load_config_file",
    "as_list",
    "as_duration",
]
