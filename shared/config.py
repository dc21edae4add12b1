"""
Shared configuration management for the feature flags library.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlagsConfig(BaseSettings):
    """Configuration recognised by the feature flags core.

    Every option can be set from the environment with the ``FLAGS_``
    prefix, e.g. ``FLAGS_CACHE_TTL=60``.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLAGS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Backend selection
    store: Literal["redis", "postgres", "memory"] = Field(default="redis")
    store_timeout: float = Field(default=5.0, gt=0)

    # Cache
    cache_enabled: bool = Field(default=True)
    cache_ttl: float = Field(default=900.0)

    # Invalidation broadcast
    notifications: Literal["redis", "kafka", "none"] = Field(default="redis")
    notifications_channel: str = Field(default="feature_flags_changes")
    # Await the broadcast before a write returns instead of fire-and-forget
    notifications_synchronous: bool = Field(default=False)

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_key_prefix: str = Field(default="feature_flags")
    postgres_dsn: str = Field(default="postgres://localhost:5432/feature_flags")
    kafka_bootstrap: str = Field(default="localhost:9092")

    # Logging
    log_level: str = Field(default="info")

    @field_validator("cache_ttl")
    @classmethod
    def _positive_ttl(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("cache_ttl must be positive")
        return value


def get_config(**overrides) -> FlagsConfig:
    """Get configuration, with explicit overrides taking precedence over the environment."""
    return FlagsConfig(**overrides)
