"""
Configuration management for the work order service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict

REDACTION_MARKER = "***REDACTED***"
_SENSITIVE_FRAGMENTS = ("token", "secret", "password")


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class IdentityConfig(BaseModel):
    """Identity service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    resolve_path: str
    timeout_seconds: int


class NotificationsConfig(BaseModel):
    """Notification sink connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    notify_path: str
    timeout_seconds: int


class UploadsConfig(BaseModel):
    """Object upload service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    upload_path: str
    timeout_seconds: int
    max_file_size: int


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class SchedulerConfig(BaseModel):
    """Deadline escalation scheduler configuration."""

    model_config = ConfigDict(extra="forbid")
    enabled: bool
    interval_seconds: float
    initial_delay_seconds: float


class RetentionConfig(BaseModel):
    """Soft-delete horizons, in days."""

    model_config = ConfigDict(extra="forbid")
    hide_after_days: int
    delete_after_days: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    identity: IdentityConfig
    notifications: NotificationsConfig
    uploads: UploadsConfig
    request: RequestConfig
    scheduler: SchedulerConfig
    retention: RetentionConfig


def get_config_path() -> Path:
    """Determine configuration file path."""
    return Path(os.environ.get("CONFIG_PATH", "config.yaml"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and validate settings, caching the result."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    with config_path.open(encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file must contain a mapping: {config_path}")
    return Settings.model_validate(raw)


def clear_settings_cache() -> None:
    """Clear the cached settings. Used by tests."""
    get_settings.cache_clear()


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTION_MARKER
            if any(fragment in key.lower() for fragment in _SENSITIVE_FRAGMENTS)
            else _redact(item)
            for key, item in value.items()
        }
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    return _redact(get_settings().model_dump())
