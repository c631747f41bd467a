"""
Tests for configuration loading.
"""

import json
import pytest
from datetime import timedelta

from contextgate.core.config import Config
from contextgate.errors import ConfigurationError, ErrorCode
from contextgate.util import parse_duration_string


class TestConfig:

    def test_defaults(self):
        config = Config()

        assert config.sensitive_consent_expiry == timedelta(hours=24)
        assert config.standard_consent_expiry == timedelta(days=7)
        assert config.default_geofence_radius == 100.0
        assert "health" in config.sensitive_data_types
        assert config.validate()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CONTEXTGATE_SENSITIVE_CONSENT_EXPIRY", "12h")
        monkeypatch.setenv("CONTEXTGATE_SENSITIVE_DATA_TYPES", "health, genetic")
        monkeypatch.setenv("CONTEXTGATE_METRICS_ENABLED", "false")
        monkeypatch.setenv("CONTEXTGATE_DEFAULT_GEOFENCE_RADIUS", "250")

        config = Config.from_env()

        assert config.sensitive_consent_expiry == timedelta(hours=12)
        assert config.sensitive_data_types == ["health", "genetic"]
        assert config.metrics_enabled is False
        assert config.default_geofence_radius == 250.0

    def test_from_env_keeps_default_on_bad_value(self, monkeypatch):
        monkeypatch.setenv("CONTEXTGATE_RETENTION_LIMIT", "forever")
        assert Config.from_env().retention_limit == timedelta(hours=24)

    def test_from_yaml_file(self, tmp_path):
        path = tmp_path / "contextgate.yaml"
        path.write_text(
            "standard-consent-expiry: 3d\n"
            "sensitive_actions: [delete, export]\n"
            "business_hours_start: 8\n"
            "unknown_key: ignored\n",
            encoding="utf-8"
        )

        config = Config.from_file(str(path))

        assert config.standard_consent_expiry == timedelta(days=3)
        assert config.sensitive_actions == ["delete", "export"]
        assert config.business_hours_start == 8

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "contextgate.json"
        path.write_text(json.dumps({"retention_limit": 3600, "log_level": "debug"}), encoding="utf-8")

        config = Config.from_file(str(path))

        assert config.retention_limit == timedelta(hours=1)
        assert config.validate()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            Config.from_file(str(tmp_path / "absent.yaml"))

    def test_bad_duration_in_file(self, tmp_path):
        path = tmp_path / "contextgate.json"
        path.write_text(json.dumps({"retention_limit": "soon"}), encoding="utf-8")

        with pytest.raises(ConfigurationError) as exc_info:
            Config.from_file(str(path))
        assert exc_info.value.code == ErrorCode.INVALID_CONFIGURATION

    @pytest.mark.parametrize("overrides", [
        {"default_geofence_radius": 0},
        {"business_hours_start": 18, "business_hours_end": 9},
        {"retention_limit": timedelta(0)},
        {"log_level": "chatty"},
    ])
    def test_validate_rejects(self, overrides):
        with pytest.raises(ConfigurationError):
            Config(**overrides).validate()


def test_parse_duration_string():
    assert parse_duration_string("250ms") == timedelta(milliseconds=250)
    assert parse_duration_string("1.5h") == timedelta(minutes=90)
    with pytest.raises(ValueError):
        parse_duration_string("3 weeks")
