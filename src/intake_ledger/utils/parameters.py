"""
Configuration and parameter loading using Pydantic.

This module provides centralized configuration management for the ledger.
All parameters are loaded from YAML and validated using Pydantic models;
environment variables prefixed with ``INTAKE_LEDGER_`` override file values
that are not set explicitly.
"""

from pathlib import Path
from typing import Any

import pytz
import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from intake_ledger.domain.records import StorageMode
from intake_ledger.utils.exceptions import ConfigurationError


class LocalStoreConfig(BaseModel):
    """Embedded SQLite store configuration."""

    path: str = "data/intake_ledger.sqlite3"


class RemoteStoreConfig(BaseModel):
    """Remote PostgreSQL store configuration."""

    dsn: str | None = None
    connect_timeout: int = Field(5, ge=1)


class StorageConfig(BaseModel):
    """Storage backends and the default routing mode."""

    mode: StorageMode = StorageMode.LOCAL
    local: LocalStoreConfig = Field(default_factory=LocalStoreConfig)
    remote: RemoteStoreConfig = Field(default_factory=RemoteStoreConfig)


class AuthConfig(BaseModel):
    """Bearer credential verification configuration."""

    jwt_secret: str | None = None
    algorithms: list[str] = Field(default_factory=lambda: ["HS256"])
    audience: str | None = None
    allowed_users: list[str] = Field(default_factory=list)


class AggregationConfig(BaseModel):
    """Time-windowed aggregation configuration."""

    timezone: str = "UTC"
    rolling_window_hours: int = Field(24, ge=1)
    refresh_interval_seconds: float = Field(60.0, gt=0)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        if value not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {value}")
        return value


class AuditConfig(BaseModel):
    """Audit trail buffering and retention configuration."""

    flush_delay_seconds: float = Field(1.0, gt=0)
    retention_days: int = Field(90, ge=1)
    max_details_length: int = Field(100, ge=1)


class BackupConfig(BaseModel):
    """Backup file configuration."""

    dir: str = "backups"
    filename_prefix: str = "intake-ledger-backup"


class PaginationConfig(BaseModel):
    """History pagination configuration."""

    default_page_size: int = Field(20, ge=1)
    max_page_size: int = Field(200, ge=1)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None
    console: bool = True


class AppConfig(BaseSettings):
    """Main application configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="INTAKE_LEDGER_", env_nested_delimiter="__", case_sensitive=False
    )


class ParameterLoader:
    """
    Centralized parameter loader for the ledger.

    Loads and validates configuration from YAML files using Pydantic models.
    Provides type-safe access to all configuration parameters.
    """

    def __init__(self, config_path: str = "config/config.yaml") -> None:
        """
        Initialize parameter loader.

        Args:
            config_path: Path to the YAML configuration file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        self.config_path = Path(config_path)
        self.config: AppConfig
        self._load_config()

    def _load_config(self) -> None:
        """
        Load configuration from YAML file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, encoding="utf-8") as f:
                config_dict = yaml.safe_load(f) or {}

            if not isinstance(config_dict, dict):
                raise ConfigurationError(
                    f"Configuration root must be a mapping: {self.config_path}"
                )

            self.config = AppConfig(**config_dict)

        except ConfigurationError:
            raise
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

    def get_storage_config(self) -> StorageConfig:
        """Get storage configuration."""
        return self.config.storage

    def get_auth_config(self) -> AuthConfig:
        """Get credential verification configuration."""
        return self.config.auth

    def get_aggregation_config(self) -> AggregationConfig:
        """Get aggregation configuration."""
        return self.config.aggregation

    def get_audit_config(self) -> AuditConfig:
        """Get audit trail configuration."""
        return self.config.audit

    def get_backup_config(self) -> BackupConfig:
        """Get backup configuration."""
        return self.config.backup

    def get_pagination_config(self) -> PaginationConfig:
        """Get pagination configuration."""
        return self.config.pagination

    def get_logging_config(self) -> LoggingConfig:
        """Get logging configuration."""
        return self.config.logging

    def get_raw_config(self) -> dict[str, Any]:
        """
        Get raw configuration dictionary.

        Secrets are masked so the result is safe to log.

        Returns:
            Dictionary representation of the configuration.
        """
        raw = self.config.model_dump(mode="json")
        if raw["auth"].get("jwt_secret"):
            raw["auth"]["jwt_secret"] = "***"
        if raw["storage"]["remote"].get("dsn"):
            raw["storage"]["remote"]["dsn"] = "***"
        return raw
