"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_gatekeeper_settings() -> "GatekeeperSettings":
    """Build rate limiting settings from environment."""

    return GatekeeperSettings()


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()


class GatekeeperSettings(BaseSettings):
    """Rate limiting configuration.

    ``limit`` and ``refresh_interval_seconds`` form the default
    ``RateLimitConfig``; routes may override them individually.
    """

    enabled: bool = Field(
        True,
        description="Enable rate limiting on protected routes",
    )
    limit: int = Field(
        60,
        description="Maximum number of requests allowed per window (per key)",
        ge=1,
    )
    refresh_interval_seconds: float = Field(
        60.0,
        description="Window length in seconds",
        gt=0,
    )
    store: Literal["memory", "redis"] = Field(
        "memory",
        description="Counter store backend: in-process memory or shared Redis",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL used when store=redis",
    )
    redis_namespace: str = Field(
        "gatekeeper",
        description="Prefix for every Redis key written by the counter store",
    )
    redis_socket_timeout_seconds: float = Field(
        0.5,
        description="Socket timeout for Redis calls; a timeout surfaces as store unavailable",
        gt=0,
    )
    key_prefix: str = Field(
        "gatekeeper_",
        description="Prefix prepended to every derived rate limit key",
    )
    key_source: Literal["hostname", "api_key", "principal"] = Field(
        "hostname",
        description="Request attribute used to identify the caller",
    )
    trust_forwarded_for: bool = Field(
        True,
        description="Use the first X-Forwarded-For entry as the caller hostname",
    )
    scope_by_route: bool = Field(
        False,
        description="Append the route path to keys so routes never share counters",
    )
    default_identity: str = Field(
        "unknown",
        description="Identity used when a request carries no identifying attribute",
    )
    failure_policy: Literal["fail_closed", "fail_open"] = Field(
        "fail_closed",
        description="Reject (fail_closed) or admit (fail_open) requests when the store is unavailable",
    )
    include_headers: bool = Field(
        True,
        description="Attach Rate-Limit-* headers to responses",
    )
    memory_max_entries: int | None = Field(
        100_000,
        description="Upper bound on keys held by the in-memory store (None for unlimited)",
        ge=1,
    )
    memory_sweep_interval_seconds: float = Field(
        60.0,
        description="Minimum delay between sweeps of expired in-memory entries",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="GATEKEEPER_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(
        "INFO",
        description="Root log level",
    )
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Where log lines are written",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and propagate the request id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    gatekeeper: GatekeeperSettings = Field(default_factory=_build_gatekeeper_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
