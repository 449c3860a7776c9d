"""Environment-based configuration using pydantic-settings.

Provides type-safe, validated configuration from environment variables
with sensible defaults. Supports .env files and nested configuration.

Example:
    >>> from mediagate.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.rate_limit.max_tokens
    10

    # Or with environment variables:
    # MEDIAGATE_RATELIMIT_MAX_TOKENS=20
    # MEDIAGATE_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, NonNegativeFloat, PositiveFloat, PositiveInt, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitSettings(BaseSettings):
    """Token bucket defaults for the shared limiter."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIAGATE_RATELIMIT_",
        extra="ignore",
    )

    max_tokens: Annotated[int, Field(ge=1, le=100, description="Burst capacity")] = 10
    refill_rate: Annotated[float, Field(ge=0.1, le=10.0, description="Tokens added per second")] = 1.0


class RetrySettings(BaseSettings):
    """Default retry configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIAGATE_RETRY_",
        extra="ignore",
    )

    max_attempts: Annotated[int, Field(ge=1, le=10)] = 3
    initial_delay_ms: NonNegativeFloat = Field(default=1000.0, description="First inter-attempt delay (0 retries immediately)")
    max_delay_ms: PositiveFloat = Field(default=30_000.0, description="Cap for delays after the first")
    backoff_multiplier: Annotated[float, Field(ge=1.0)] = 2.0


class CacheSettings(BaseSettings):
    """Default (response) cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIAGATE_CACHE_",
        extra="ignore",
    )

    max_size: PositiveInt = Field(default=50, description="Max cache entries")
    ttl_ms: PositiveFloat | None = Field(default=30_000.0, description="Entry TTL, None for no expiry")


class PollSettings(BaseSettings):
    """Async task polling configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIAGATE_POLL_",
        extra="ignore",
    )

    max_attempts: Annotated[int, Field(ge=10, le=500)] = 150
    initial_interval_ms: PositiveFloat = 2000.0
    max_interval_ms: PositiveFloat = 10_000.0

    @model_validator(mode="after")
    def _check_intervals(self) -> PollSettings:
        if self.initial_interval_ms > self.max_interval_ms:
            raise ValueError("initial_interval_ms cannot exceed max_interval_ms")
        return self


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIAGATE_LOG_",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "text"] = "text"


class MediagateSettings(BaseSettings):
    """Root settings.

    Loads configuration from environment variables with MEDIAGATE_ prefix.

    Example environment variables:
        MEDIAGATE_RATELIMIT_MAX_TOKENS=20
        MEDIAGATE_RETRY_MAX_ATTEMPTS=5
        MEDIAGATE_CACHE_TTL_MS=60000
        MEDIAGATE_LOG_FORMAT=json
    """

    model_config = SettingsConfigDict(
        env_prefix="MEDIAGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    poll: PollSettings = Field(default_factory=PollSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> MediagateSettings:
    """Get the global settings instance (cached)."""
    return MediagateSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing).

    After calling this, the next get_settings() call will
    reload configuration from environment.
    """
    get_settings.cache_clear()
