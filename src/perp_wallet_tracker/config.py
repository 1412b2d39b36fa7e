"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Perp Wallet Tracker application, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

DEFAULT_GMX_GRAPHQL_URL = "https://gmx.squids.live/gmx-synthetics-arbitrum:prod/api/graphql"
DEFAULT_SEED_PATH = Path(__file__).parent / "data" / "wallet_seeds.json"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./wallets.db",
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError(
                "DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string"
            )
        return v


class RedisSettings(BaseSettings):
    """Redis settings for publishing refresh events."""

    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (events are only published when set)",
    )
    event_channel: str = Field(
        default="perp_wallets:refresh",
        alias="REDIS_EVENT_CHANNEL",
        description="Pub/sub channel receiving refresh summaries",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        """Check if Redis event publishing is enabled."""
        return self.url is not None


class GmxSettings(BaseSettings):
    """GMX GraphQL position feed settings."""

    model_config = SettingsConfigDict(env_prefix="GMX_", extra="ignore")

    graphql_url: str = Field(
        default=DEFAULT_GMX_GRAPHQL_URL,
        alias="GMX_GRAPHQL_URL",
        description="GMX Subsquid GraphQL endpoint",
    )
    request_timeout_seconds: float = Field(
        default=20.0,
        alias="GMX_REQUEST_TIMEOUT_SECONDS",
        ge=1.0,
        le=120.0,
        description="HTTP timeout for a single GraphQL request",
    )
    min_request_interval_seconds: float = Field(
        default=1.0,
        alias="GMX_MIN_REQUEST_INTERVAL_SECONDS",
        ge=0.0,
        le=60.0,
        description="Minimum spacing between two GraphQL requests",
    )
    result_limit: int = Field(
        default=1000,
        alias="GMX_RESULT_LIMIT",
        ge=1,
        le=10_000,
        description="Maximum number of positions returned per query",
    )
    max_retries: int = Field(
        default=3,
        alias="GMX_MAX_RETRIES",
        ge=0,
        le=10,
        description="Retries for transient (network / 429 / 5xx) failures",
    )

    @field_validator("graphql_url")
    @classmethod
    def validate_graphql_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("GMX_GRAPHQL_URL must be an HTTP(S) endpoint")
        return v


class DiscoverySettings(BaseSettings):
    """Wallet discovery settings."""

    model_config = SettingsConfigDict(env_prefix="DISCOVERY_", extra="ignore")

    batch_size: int = Field(
        default=20,
        alias="DISCOVERY_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Addresses checked and created per store transaction",
    )
    seed_path: Path | None = Field(
        default=None,
        alias="DISCOVERY_SEED_PATH",
        description="JSON seed list ({\"wallets\": [...]}); bundled list when unset",
    )
    inactive_days: int = Field(
        default=30,
        alias="DISCOVERY_INACTIVE_DAYS",
        ge=1,
        le=3650,
        description="Inactivity window used by the wallet sweep",
    )

    @property
    def resolved_seed_path(self) -> Path:
        return self.seed_path or DEFAULT_SEED_PATH


class RefreshSettings(BaseSettings):
    """Refresh cycle scheduling settings."""

    model_config = SettingsConfigDict(env_prefix="REFRESH_", extra="ignore")

    interval_seconds: int = Field(
        default=900,
        alias="REFRESH_INTERVAL_SECONDS",
        ge=10,
        le=24 * 3600,
        description="Seconds between background refresh cycles",
    )
    run_on_start: bool = Field(
        default=True,
        alias="REFRESH_RUN_ON_START",
        description="Run one refresh cycle as soon as the service starts",
    )
    classify_workers: int = Field(
        default=1,
        alias="REFRESH_CLASSIFY_WORKERS",
        ge=1,
        le=32,
        description="Wallets classified concurrently within one cycle",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from perp_wallet_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.gmx.graphql_url)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    gmx: GmxSettings = Field(
        default_factory=lambda: GmxSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    discovery: DiscoverySettings = Field(
        default_factory=lambda: DiscoverySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    refresh: RefreshSettings = Field(
        default_factory=lambda: RefreshSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "gmx": {
                "graphql_url": self.gmx.graphql_url,
                "request_timeout_seconds": str(self.gmx.request_timeout_seconds),
                "min_request_interval_seconds": str(self.gmx.min_request_interval_seconds),
                "result_limit": str(self.gmx.result_limit),
            },
            "discovery": {
                "batch_size": str(self.discovery.batch_size),
                "seed_path": str(self.discovery.resolved_seed_path),
                "inactive_days": str(self.discovery.inactive_days),
            },
            "refresh": {
                "interval_seconds": str(self.refresh.interval_seconds),
                "classify_workers": str(self.refresh.classify_workers),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
