"""
Configuration module for the Retention Toolkit.

Provides centralized configuration for the lifecycle manager, the retention
sweeper and the audit log.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union, get_args, get_origin

import pytz
import yaml
from pydantic import BaseModel, Field, field_validator

# Fixed restore window; not configurable.
RETENTION_WINDOW_DAYS = 60


class ChecksumAlgorithm(str, Enum):
    """Supported checksum algorithms for audit entries."""

    SHA256 = "sha256"
    SHA512 = "sha512"


class RetentionConfig(BaseModel):
    """Central configuration for soft delete, sweeps and the audit log.

    Configuration Sources (in order of precedence):
        1. Programmatic settings (highest priority)
        2. Environment variables (RETENTION_ prefix)
        3. Configuration files (JSON or YAML)
        4. Default values (lowest priority)

    Example:
        >>> config = RetentionConfig(
        ...     database_url="postgresql://app@db/app",
        ...     sweep_hour=3,
        ... )

        >>> import os
        >>> os.environ['RETENTION_SWEEP_HOUR'] = '4'
        >>> config = RetentionConfig.from_env()

        >>> config = RetentionConfig.from_file('retention.yaml')

    Note:
        The 60 day restore window is a fixed constant
        (``RETENTION_WINDOW_DAYS``) and is deliberately absent from this model.
        The audit log retention period must always be longer than it.
    """

    # General settings
    application_name: str = Field(
        "Retention Toolkit", description="Name of the application for audit entries"
    )
    environment: str = Field(
        "production", description="Environment (development, staging, production)"
    )
    timezone: str = Field("UTC", description="Timezone used for the sweep schedule")
    database_url: str = Field(
        "sqlite:///./retention.db", description="SQLAlchemy database URL"
    )
    log_level: str = Field("INFO", description="Logging level for the CLI")

    # Audit log settings
    audit_log_retention_days: int = Field(
        365, description="Days to keep audit log entries before purging", gt=0
    )
    audit_checksum_algorithm: ChecksumAlgorithm = Field(
        ChecksumAlgorithm.SHA256, description="Algorithm for audit entry checksums"
    )

    # Sweep settings
    sweep_enabled: bool = Field(True, description="Enable the scheduled sweep")
    sweep_hour: int = Field(2, description="Hour of day for the sweep", ge=0, le=23)
    sweep_minute: int = Field(
        0, description="Minute of the hour for the sweep", ge=0, le=59
    )

    # Listing settings
    default_page_size: int = Field(
        20, description="Default page size for deleted record listings", gt=0
    )
    max_page_size: int = Field(
        100, description="Largest page size accepted for listings", gt=0, le=1000
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        valid_environments = {
            "development",
            "staging",
            "production",
            "validation",
            "test",
        }
        if v.lower() not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(sorted(valid_environments))}"
            )
        return v.lower()

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Ensure the timezone is known to pytz."""
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("audit_log_retention_days")
    @classmethod
    def validate_audit_retention(cls, v: int) -> int:
        """Audit entries must outlive the records they describe."""
        if v <= RETENTION_WINDOW_DAYS:
            raise ValueError(
                f"Audit log retention must exceed the {RETENTION_WINDOW_DAYS} day "
                "restore window"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_env(cls, prefix: str = "RETENTION_") -> "RetentionConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        import os

        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var not in os.environ:
                continue
            value = os.environ[env_var]

            field_type = field_info.annotation

            # Handle Optional types
            if get_origin(field_type) is Union:
                args = get_args(field_type)
                field_type = next((arg for arg in args if arg is not type(None)), str)

            try:
                if field_type == bool:
                    config_dict[field_name] = value.lower() in (
                        "true",
                        "1",
                        "yes",
                        "on",
                    )
                elif field_type == int:
                    config_dict[field_name] = int(value)
                elif isinstance(field_type, type) and issubclass(field_type, Enum):
                    config_dict[field_name] = field_type(value)
                else:
                    config_dict[field_name] = value
            except (ValueError, TypeError):
                # Leave the raw string for the validator to reject
                config_dict[field_name] = value

        return cls.model_validate(config_dict)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RetentionConfig":
        """
        Load configuration from a JSON or YAML file.

        Args:
            path: Path to a ``.json``, ``.yaml`` or ``.yml`` file

        Returns:
            Configuration instance
        """
        path = Path(path)
        with open(path, "r", encoding="utf-8") as fh:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(fh) or {}
            else:
                data = json.load(fh)

        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")

        return cls.model_validate(data)

    def get_sweep_config(self) -> Dict[str, Any]:
        """Get sweep-related configuration."""
        return {
            "enabled": self.sweep_enabled,
            "hour": self.sweep_hour,
            "minute": self.sweep_minute,
            "timezone": self.timezone,
            "retention_window_days": RETENTION_WINDOW_DAYS,
            "audit_log_retention_days": self.audit_log_retention_days,
        }


# Global configuration instance
_config: Optional[RetentionConfig] = None


def get_config() -> RetentionConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        _config = RetentionConfig.from_env()

    return _config


def set_config(config: Optional[RetentionConfig]) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set, or None to reload from the environment
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> RetentionConfig:
    """
    Configure the toolkit with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = RetentionConfig(**kwargs)
    else:
        config_dict = _config.to_dict()
        config_dict.update(kwargs)
        _config = RetentionConfig(**config_dict)

    return _config
