"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Settings are grouped by concern (app, redis, log) and read once at process
start. Changing the rate limit table requires a restart.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ first.
# Tests pin their environment in conftest.py and must not be overridden.
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment."""

    return AppSettings()  # type: ignore[call-arg]


def _build_redis_settings() -> "RedisSettings":
    """Build shared counter store settings from environment."""

    return RedisSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    rate_limit_enabled: bool = Field(
        True,
        description="Enable admission control on limited routes",
    )
    trust_forwarded_headers: bool = Field(
        False,
        description=(
            "Derive client IPs from X-Forwarded-For / X-Real-IP / CF-Connecting-IP. "
            "Enable only behind proxies that overwrite or append these headers"
        ),
    )
    trusted_proxy_count: int = Field(
        1,
        description="Number of trusted proxies that append to X-Forwarded-For",
        ge=1,
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated API keys accepted as rate limit principals",
    )
    reaper_interval_seconds: float = Field(
        300.0,
        description="Interval between sweeps of expired local counters",
        gt=0,
    )
    lock_stripes: int = Field(
        64,
        description="Number of lock stripes guarding the local counter map",
        ge=1,
    )
    rate_limit_overrides: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description=(
            "JSON mapping of scope -> {requests, window_ms, burst_requests, "
            "burst_window_ms} overriding the built-in policy table"
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Shared counter store (Redis) configuration.

    When ``enabled`` is false the service runs in local-only mode: each
    process enforces its own limits and nothing is shared across instances.
    """

    enabled: bool = Field(
        False,
        description="Use Redis as the shared counter store",
    )
    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL (may embed credentials)",
    )
    socket_timeout_ms: int = Field(
        200,
        description="Per-command socket timeout in milliseconds",
        ge=1,
    )
    connect_timeout_ms: int = Field(
        200,
        description="Connection timeout in milliseconds",
        ge=1,
    )
    key_prefix: str = Field(
        "rate_limit",
        description="Namespace prefix for counter keys",
    )
    failure_cooldown_seconds: float = Field(
        5.0,
        description="Skip Redis for this long after a failure (0 disables)",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()
