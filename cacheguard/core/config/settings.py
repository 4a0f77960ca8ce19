#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
caching and rate limiting layer. All configuration is centralized here to
ensure consistency across modules.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- IDE autocomplete for all settings
- Easy testing with override mechanisms

Author: System Architect
Date: 2025-12-05
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_fallback_flag(v):
    """Only the literal string 'false' disables the memory fallback."""
    if isinstance(v, str):
        return v.strip().lower() != "false"
    return v


class RedisSettings(BaseSettings):
    """
    Redis configuration for the resilient cache client.

    STAGE-0.1: Redis connection configuration

    Mode selection:
    - REDIS_CLUSTER_URLS set: cluster mode (wins over REDIS_URL)
    - REDIS_URL set: single node mode
    - neither: in-process memory mode, which is a valid deployment choice
    """

    REDIS_URL: str | None = Field(default=None, description="Single-node Redis URL")
    REDIS_CLUSTER_URLS: str | None = Field(
        default=None, description="Comma-separated Redis Cluster node URLs"
    )
    REDIS_FALLBACK_TO_MEMORY: bool = Field(
        default=True, description="Serve from the in-process store when Redis fails"
    )
    REDIS_MAX_RETRIES: int = Field(default=3, ge=0, description="Retry budget for the connect handshake")
    REDIS_RETRY_DELAY_MS: int = Field(default=200, ge=0, description="Backoff base delay in milliseconds")
    REDIS_CONNECTION_TIMEOUT_MS: int = Field(default=5000, gt=0, description="Connect timeout in milliseconds")
    REDIS_COMMAND_TIMEOUT_MS: int = Field(default=5000, gt=0, description="Command timeout in milliseconds")

    @field_validator("REDIS_FALLBACK_TO_MEMORY", mode="before")
    @classmethod
    def parse_fallback_flag(cls, v):
        return _parse_fallback_flag(v)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CacheSettings(BaseSettings):
    """
    In-process fallback store configuration.

    STAGE-0.2: Fallback store bounds

    The fallback store bridges short outages, so its default TTL is short and
    also acts as a ceiling for every TTL requested while in memory mode.
    """

    CACHE_FALLBACK_MAX_ENTRIES: int = Field(default=10_000, gt=0, description="Fallback store capacity")
    CACHE_FALLBACK_DEFAULT_TTL: int = Field(default=60, gt=0, description="Fallback default/max TTL in seconds")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RateLimitSettings(BaseSettings):
    """
    Rate limiting configuration.

    STAGE-3: Rate limiting thresholds

    Architectural Decision: fixed-window in-process counters
    - Per-IP, per-user and per-custom-key limits
    - Periodic sweep bounds memory for one-off keys
    """

    RATE_LIMIT_MAX_ATTEMPTS: int = Field(default=5, gt=0, description="Default IP limiter budget")
    RATE_LIMIT_WINDOW_MS: int = Field(default=15 * 60 * 1000, gt=0, description="Default IP limiter window")
    USER_RATE_LIMIT_BASE: int = Field(default=100, gt=0, description="Per-user base limit")
    USER_RATE_LIMIT_WINDOW_MS: int = Field(default=60 * 1000, gt=0, description="Per-user window")
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS: int = Field(default=300, gt=0, description="Sweeper period")
    RATE_LIMIT_STALE_AFTER_SECONDS: int = Field(default=900, gt=0, description="Sweeper age threshold")
    GLOBAL_RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable app-wide IP limiter")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ApplicationSettings(BaseSettings):
    """
    General application settings.

    STAGE-0: Application initialization
    """

    ENVIRONMENT: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="cacheguard", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")

    CORS_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from cacheguard.core.config.settings import get_settings

        settings = get_settings()
        redis_url = settings.redis.REDIS_URL
        window = settings.rate_limit.RATE_LIMIT_WINDOW_MS
    """

    # Redis settings
    REDIS_URL: str | None = Field(default=None, description="Single-node Redis URL")
    REDIS_CLUSTER_URLS: str | None = Field(
        default=None, description="Comma-separated Redis Cluster node URLs"
    )
    REDIS_FALLBACK_TO_MEMORY: bool = Field(
        default=True, description="Serve from the in-process store when Redis fails"
    )
    REDIS_MAX_RETRIES: int = Field(default=3, ge=0, description="Retry budget for the connect handshake")
    REDIS_RETRY_DELAY_MS: int = Field(default=200, ge=0, description="Backoff base delay in milliseconds")
    REDIS_CONNECTION_TIMEOUT_MS: int = Field(default=5000, gt=0, description="Connect timeout in milliseconds")
    REDIS_COMMAND_TIMEOUT_MS: int = Field(default=5000, gt=0, description="Command timeout in milliseconds")

    # Fallback store settings
    CACHE_FALLBACK_MAX_ENTRIES: int = Field(default=10_000, gt=0, description="Fallback store capacity")
    CACHE_FALLBACK_DEFAULT_TTL: int = Field(default=60, gt=0, description="Fallback default/max TTL in seconds")

    # Rate limiting settings
    RATE_LIMIT_MAX_ATTEMPTS: int = Field(default=5, gt=0, description="Default IP limiter budget")
    RATE_LIMIT_WINDOW_MS: int = Field(default=15 * 60 * 1000, gt=0, description="Default IP limiter window")
    USER_RATE_LIMIT_BASE: int = Field(default=100, gt=0, description="Per-user base limit")
    USER_RATE_LIMIT_WINDOW_MS: int = Field(default=60 * 1000, gt=0, description="Per-user window")
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS: int = Field(default=300, gt=0, description="Sweeper period")
    RATE_LIMIT_STALE_AFTER_SECONDS: int = Field(default=900, gt=0, description="Sweeper age threshold")
    GLOBAL_RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable app-wide IP limiter")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application settings
    ENVIRONMENT: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="cacheguard", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    API_BASE_PATH: str = Field(default="/api/v1", description="Prefix for all API routers")
    CORS_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    @field_validator("REDIS_FALLBACK_TO_MEMORY", mode="before")
    @classmethod
    def parse_fallback_flag(cls, v):
        return _parse_fallback_flag(v)

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    # Nested configuration objects

    @property
    def redis(self) -> 'RedisSettings':
        """Get Redis settings."""
        return RedisSettings(
            REDIS_URL=self.REDIS_URL,
            REDIS_CLUSTER_URLS=self.REDIS_CLUSTER_URLS,
            REDIS_FALLBACK_TO_MEMORY=self.REDIS_FALLBACK_TO_MEMORY,
            REDIS_MAX_RETRIES=self.REDIS_MAX_RETRIES,
            REDIS_RETRY_DELAY_MS=self.REDIS_RETRY_DELAY_MS,
            REDIS_CONNECTION_TIMEOUT_MS=self.REDIS_CONNECTION_TIMEOUT_MS,
            REDIS_COMMAND_TIMEOUT_MS=self.REDIS_COMMAND_TIMEOUT_MS,
        )

    @property
    def cache(self) -> 'CacheSettings':
        """Get fallback store settings."""
        return CacheSettings(
            CACHE_FALLBACK_MAX_ENTRIES=self.CACHE_FALLBACK_MAX_ENTRIES,
            CACHE_FALLBACK_DEFAULT_TTL=self.CACHE_FALLBACK_DEFAULT_TTL,
        )

    @property
    def rate_limit(self) -> 'RateLimitSettings':
        """Get rate limit settings."""
        return RateLimitSettings(
            RATE_LIMIT_MAX_ATTEMPTS=self.RATE_LIMIT_MAX_ATTEMPTS,
            RATE_LIMIT_WINDOW_MS=self.RATE_LIMIT_WINDOW_MS,
            USER_RATE_LIMIT_BASE=self.USER_RATE_LIMIT_BASE,
            USER_RATE_LIMIT_WINDOW_MS=self.USER_RATE_LIMIT_WINDOW_MS,
            RATE_LIMIT_CLEANUP_INTERVAL_SECONDS=self.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
            RATE_LIMIT_STALE_AFTER_SECONDS=self.RATE_LIMIT_STALE_AFTER_SECONDS,
            GLOBAL_RATE_LIMIT_ENABLED=self.GLOBAL_RATE_LIMIT_ENABLED,
        )

    @property
    def logging(self) -> 'LoggingSettings':
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    @property
    def app(self) -> 'ApplicationSettings':
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
            API_HOST=self.API_HOST,
            API_PORT=self.API_PORT,
            CORS_ORIGINS=self.CORS_ORIGINS,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Ignore extra environment variables
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
