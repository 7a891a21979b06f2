"""
CrowdSubmit Configuration Module

Configuration parser with YAML/ENV support and validation.
Uses Pydantic for type validation and settings management.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ENDPOINT_URL = "https://crowd.netguard.me/"
MIN_SDK_LEVEL = 21


class SubmitConfig(BaseSettings):
    """Telemetry submission configuration."""

    model_config = SettingsConfigDict(env_prefix="SUBMIT_")

    enabled: bool = True
    endpoint_url: str = DEFAULT_ENDPOINT_URL
    timeout_ms: int = 15000

    @field_validator("endpoint_url")
    @classmethod
    def validate_endpoint_url(cls, v: str) -> str:
        if not v.startswith(("https://", "http://")):
            raise ValueError("Endpoint URL must be an http(s) URL")
        return v

    @field_validator("timeout_ms")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v


class DeviceConfig(BaseSettings):
    """Device and application identity configuration."""

    model_config = SettingsConfigDict(env_prefix="DEVICE_")

    sdk_level: int = 23
    version_code: int = 1
    installation_id_path: str = "data/installation_id"


class SchedulerConfig(BaseSettings):
    """In-process trigger configuration."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    debug_build: bool = False
    poll_interval_seconds: float = 30.0
    initial_backoff_seconds: float = 30.0
    max_backoff_seconds: float = 5 * 60 * 60  # 5 hours


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = "sqlite+aiosqlite:///data/crowdsubmit.db"
    echo: bool = False

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("postgresql", "sqlite")):
            raise ValueError("Only PostgreSQL and SQLite databases are supported")
        return v


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = "INFO"
    format: str = "json"
    file: Optional[str] = "data/logs/crowdsubmit.log"
    max_size_mb: int = 10
    backup_count: int = 3
    console_output: bool = True

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()


class Config(BaseSettings):
    """Main configuration class aggregating all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    env: str = Field(default="development", alias="CROWDSUBMIT_ENV")

    # Sub-configurations
    submit: SubmitConfig = Field(default_factory=SubmitConfig)
    device: DeviceConfig = Field(default_factory=DeviceConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path) as f:
            yaml_config = yaml.safe_load(f)

        return cls(**yaml_config) if yaml_config else cls()

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def can_submit(self) -> bool:
        """Check the submit preference and the minimum platform level."""
        return self.submit.enabled and self.device.sdk_level >= MIN_SDK_LEVEL


_config: Optional[Config] = None


def load_config(yaml_path: Optional[str | Path] = None) -> Config:
    """Load and cache the configuration."""
    global _config

    if yaml_path:
        _config = Config.from_yaml(yaml_path)
    else:
        config_path = os.getenv("CROWDSUBMIT_CONFIG")
        if config_path and Path(config_path).exists():
            _config = Config.from_yaml(config_path)
        else:
            _config = Config.from_env()

    return _config


@lru_cache
def get_config() -> Config:
    """Get the cached configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(yaml_path: Optional[str | Path] = None) -> Config:
    """Reload configuration (clears cache)."""
    global _config
    get_config.cache_clear()
    return load_config(yaml_path)
