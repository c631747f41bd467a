"""
Configuration module for contextgate.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field, fields
import logging

from ..errors import ConfigurationError
from ..util.config import (
    ENV_PREFIX,
    get_config_value,
    load_config_file,
    as_list,
    as_duration,
)


DEFAULT_SENSITIVE_DATA_TYPES = ["health", "financial", "biometric", "location"]
DEFAULT_SENSITIVE_ACTIONS = ["delete", "share", "export", "modify_permissions"]
DEFAULT_SENSITIVE_RESOURCE_TYPES = ["health_data", "location", "contact"]

_DURATION_FIELDS = ("sensitive_consent_expiry", "standard_consent_expiry", "retention_limit")
_LIST_FIELDS = ("sensitive_data_types", "sensitive_actions", "sensitive_resource_types")


@dataclass
class Config:
    """Configuration for the authorization and consent engine"""
    sensitive_data_types: List[str] = field(default_factory=lambda: list(DEFAULT_SENSITIVE_DATA_TYPES))
    sensitive_consent_expiry: timedelta = field(default_factory=lambda: timedelta(hours=24))
    standard_consent_expiry: timedelta = field(default_factory=lambda: timedelta(days=7))
    retention_limit: timedelta = field(default_factory=lambda: timedelta(hours=24))
    default_geofence_radius: float = 100.0
    sensitive_actions: List[str] = field(default_factory=lambda: list(DEFAULT_SENSITIVE_ACTIONS))
    sensitive_resource_types: List[str] = field(default_factory=lambda: list(DEFAULT_SENSITIVE_RESOURCE_TYPES))
    business_hours_start: int = 9
    business_hours_end: int = 17
    metrics_enabled: bool = True
    audit_log_path: Optional[str] = None
    store_path: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create configuration from a plain mapping, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}

        try:
            for name in _DURATION_FIELDS:
                if name in values:
                    values[name] = as_duration(values[name])
            for name in _LIST_FIELDS:
                if name in values:
                    values[name] = as_list(values[name])
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration value: {e}", cause=e)

        return cls(**values)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "Config":
        """Create configuration from CONTEXTGATE_* environment variables"""
        defaults = cls()
        return cls(
            sensitive_data_types=get_config_value(
                "sensitive_data_types", defaults.sensitive_data_types, list, prefix),
            sensitive_consent_expiry=get_config_value(
                "sensitive_consent_expiry", defaults.sensitive_consent_expiry, timedelta, prefix),
            standard_consent_expiry=get_config_value(
                "standard_consent_expiry", defaults.standard_consent_expiry, timedelta, prefix),
            retention_limit=get_config_value(
                "retention_limit", defaults.retention_limit, timedelta, prefix),
            default_geofence_radius=get_config_value(
                "default_geofence_radius", defaults.default_geofence_radius, float, prefix),
            sensitive_actions=get_config_value(
                "sensitive_actions", defaults.sensitive_actions, list, prefix),
            sensitive_resource_types=get_config_value(
                "sensitive_resource_types", defaults.sensitive_resource_types, list, prefix),
            business_hours_start=get_config_value(
                "business_hours_start", defaults.business_hours_start, int, prefix),
            business_hours_end=get_config_value(
                "business_hours_end", defaults.business_hours_end, int, prefix),
            metrics_enabled=get_config_value("metrics_enabled", defaults.metrics_enabled, bool, prefix),
            audit_log_path=get_config_value("audit_log_path", None, None, prefix),
            store_path=get_config_value("store_path", None, None, prefix),
            log_level=get_config_value("log_level", defaults.log_level, None, prefix),
        )

    @classmethod
    def from_file(cls, file_path: str) -> "Config":
        """Create configuration from a JSON or YAML file"""
        try:
            data = load_config_file(file_path)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot load configuration from {file_path}: {e}", cause=e)
        return cls.from_dict(data)

    def validate(self) -> bool:
        """Validate the configuration"""
        if self.default_geofence_radius <= 0:
            raise ConfigurationError("default_geofence_radius must be positive")
        if not 0 <= self.business_hours_start < self.business_hours_end <= 24:
            raise ConfigurationError("business hours must satisfy 0 <= start < end <= 24")
        for name in _DURATION_FIELDS:
            if getattr(self, name) <= timedelta(0):
                raise ConfigurationError(f"{name} must be a positive duration")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigurationError(f"Unknown log level: {self.log_level}")
        return True
