"""
Tests for toolkit configuration.
"""

import json

import pytest
import yaml
from pydantic import ValidationError

from retention_toolkit import config as config_module
from retention_toolkit.config import (
    RETENTION_WINDOW_DAYS,
    ChecksumAlgorithm,
    RetentionConfig,
    configure,
    get_config,
    set_config,
)


@pytest.fixture(autouse=True)
def reset_global_config():
    set_config(None)
    yield
    set_config(None)


class TestRetentionConfig:
    """Test field defaults and validation."""

    def test_defaults(self):
        config = RetentionConfig()

        assert config.environment == "production"
        assert config.timezone == "UTC"
        assert config.audit_log_retention_days == 365
        assert config.audit_checksum_algorithm == ChecksumAlgorithm.SHA256
        assert config.sweep_enabled is True
        assert config.sweep_hour == 2
        assert config.sweep_minute == 0
        assert config.default_page_size == 20
        assert config.max_page_size == 100

    def test_window_is_not_configurable(self):
        """The restore window is a fixed constant."""
        assert RETENTION_WINDOW_DAYS == 60
        assert "retention_window_days" not in RetentionConfig.model_fields

    def test_environment(self):
        assert RetentionConfig(environment="Staging").environment == "staging"
        with pytest.raises(ValidationError):
            RetentionConfig(environment="qa")

    def test_timezone(self):
        assert RetentionConfig(timezone="Europe/Berlin").timezone == "Europe/Berlin"
        with pytest.raises(ValidationError):
            RetentionConfig(timezone="Mars/Olympus_Mons")

    def test_audit_retention_exceeds_window(self):
        """Audit entries must outlive the records they describe."""
        with pytest.raises(ValidationError):
            RetentionConfig(audit_log_retention_days=RETENTION_WINDOW_DAYS)
        config = RetentionConfig(audit_log_retention_days=61)
        assert config.audit_log_retention_days == 61

    def test_sweep_time_bounds(self):
        with pytest.raises(ValidationError):
            RetentionConfig(sweep_hour=24)
        with pytest.raises(ValidationError):
            RetentionConfig(sweep_minute=60)

    def test_log_level(self):
        assert RetentionConfig(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            RetentionConfig(log_level="verbose")

    def test_to_dict(self):
        data = RetentionConfig(audit_checksum_algorithm="sha512").to_dict()
        assert data["audit_checksum_algorithm"] == "sha512"
        assert json.loads(json.dumps(data)) == data

    def test_sweep_config(self):
        config = RetentionConfig(sweep_hour=3, timezone="Europe/Berlin")
        sweep = config.get_sweep_config()
        assert sweep["hour"] == 3
        assert sweep["timezone"] == "Europe/Berlin"
        assert sweep["retention_window_days"] == 60


class TestConfigSources:
    """Test loading from the environment and from files."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("RETENTION_SWEEP_HOUR", "4")
        monkeypatch.setenv("RETENTION_SWEEP_ENABLED", "false")
        monkeypatch.setenv("RETENTION_AUDIT_CHECKSUM_ALGORITHM", "sha512")
        monkeypatch.setenv("RETENTION_DATABASE_URL", "sqlite:///./other.db")

        config = RetentionConfig.from_env()

        assert config.sweep_hour == 4
        assert config.sweep_enabled is False
        assert config.audit_checksum_algorithm == ChecksumAlgorithm.SHA512
        assert config.database_url == "sqlite:///./other.db"

    def test_from_env_invalid_value(self, monkeypatch):
        monkeypatch.setenv("RETENTION_SWEEP_HOUR", "late")
        with pytest.raises(ValidationError):
            RetentionConfig.from_env()

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "retention.json"
        path.write_text(json.dumps({"environment": "staging", "sweep_minute": 30}))

        config = RetentionConfig.from_file(path)
        assert config.environment == "staging"
        assert config.sweep_minute == 30

    def test_from_yaml_file(self, tmp_path):
        path = tmp_path / "retention.yaml"
        path.write_text(yaml.safe_dump({"timezone": "Asia/Tokyo", "max_page_size": 50}))

        config = RetentionConfig.from_file(path)
        assert config.timezone == "Asia/Tokyo"
        assert config.max_page_size == 50

    def test_from_file_requires_mapping(self, tmp_path):
        path = tmp_path / "retention.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            RetentionConfig.from_file(path)


class TestGlobalConfig:
    """Test the module-level configuration helpers."""

    def test_get_config_loads_env(self, monkeypatch):
        monkeypatch.setenv("RETENTION_ENVIRONMENT", "development")
        assert get_config().environment == "development"
        assert get_config() is get_config()

    def test_set_config(self):
        config = RetentionConfig(environment="test")
        set_config(config)
        assert get_config() is config

    def test_configure_updates(self):
        set_config(RetentionConfig(environment="test", sweep_hour=1))
        updated = configure(sweep_minute=45)

        assert updated.sweep_hour == 1
        assert updated.sweep_minute == 45
        assert config_module._config is updated

    def test_configure_from_scratch(self):
        config = configure(environment="validation")
        assert config.environment == "validation"
        assert get_config() is config
