"""
Configuration utilities for contextgate.
Provides environment and file loading plus duration parsing.
"""

import json
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, List

import yaml


ENV_PREFIX = "CONTEXTGATE_"


def get_config_value(key: str, default: Any = None,
                     cast_type: Optional[type] = None,
                     env_prefix: str = ENV_PREFIX) -> Any:
    """
    Get configuration value from environment or return default.
    Optionally cast to specified type.
    """
    env_key = f"{env_prefix}{key.upper()}"
    value = os.environ.get(env_key)

    if value is None:
        return default
    if cast_type is None:
        return value

    try:
        if cast_type == bool:
            return value.lower() in ('true', '1', 'yes', 'on')
        elif cast_type == list:
            return [item.strip() for item in value.split(',') if item.strip()]
        elif cast_type == timedelta:
            return parse_duration_string(value)
        else:
            return cast_type(value)
    except (ValueError, TypeError):
        return default


def parse_duration_string(duration_str: str) -> timedelta:
    """
    Parse duration string like '30s', '5m', '2h', '1d' into timedelta.
    """
    if not isinstance(duration_str, str):
        raise ValueError("Duration must be a string")

    duration_str = duration_str.strip().lower()

    match = re.match(r'^(\d+(?:\.\d+)?)\s*(ms|[smhd])$', duration_str)
    if not match:
        raise ValueError(f"Invalid duration format: {duration_str}")

    value, unit = match.groups()
    value = float(value)

    if unit == 'ms':
        return timedelta(milliseconds=value)
    elif unit == 's':
        return timedelta(seconds=value)
    elif unit == 'm':
        return timedelta(minutes=value)
    elif unit == 'h':
        return timedelta(hours=value)
    return timedelta(days=value)


def normalize_config_key(key: str) -> str:
    """Normalize configuration key to standard format."""
    return key.lower().replace('-', '_')


def load_config_file(file_path: str) -> Dict[str, Any]:
    """Load configuration from a file (JSON or YAML)."""
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    file_ext = Path(file_path).suffix.lower()

    with open(file_path, 'r', encoding='utf-8') as f:
        if file_ext == '.json':
            data = json.load(f)
        elif file_ext in ['.yaml', '.yml']:
            data = yaml.safe_load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {file_ext}")

    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {file_path}")

    return {normalize_config_key(k): v for k, v in data.items()}


def as_list(value: Any) -> List[str]:
    """Coerce a comma-separated string or iterable to a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(',') if item.strip()]
    return [str(item) for item in value]


def as_duration(value: Any) -> timedelta:
    """Coerce a duration string, number of seconds or timedelta to a timedelta."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    return parse_duration_string(value)
