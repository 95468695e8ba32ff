"""Redis pub/sub configuration settings."""

from __future__ import annotations

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """Redis settings for cross-process fan-out.

    Environment variables use REDIS_ prefix.
    Example: REDIS_URL="redis://localhost:6379/0"

    Leaving the URL unset keeps the service in single-process mode.
    """

    redis_url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection URL (redis://[username:password@]host:port/db)",
    )

    max_connections: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum Redis connection pool size",
    )

    socket_timeout: float | None = Field(
        default=None,
        description="Socket timeout in seconds (None keeps pub/sub reads blocking)",
    )

    socket_connect_timeout: float = Field(
        default=5.0,
        ge=0.1,
        le=30.0,
        description="Redis socket connection timeout in seconds",
    )

    retry_delay: float = Field(
        default=0.5,
        gt=0.0,
        le=60.0,
        description="Initial delay before re-subscribing a dropped pub/sub listener",
    )

    retry_max_delay: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Upper bound for the pub/sub re-subscribe backoff",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        env_ignore_empty=True,
    )

    @property
    def is_configured(self) -> bool:
        """Check if a Redis URL was provided."""
        return bool(self.redis_url)

    @property
    def url(self) -> str:
        """Configured Redis URL (empty string when unset)."""
        return self.redis_url or ""

    def connection_pool_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for redis.asyncio.ConnectionPool.from_url."""
        return {
            "max_connections": self.max_connections,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_connect_timeout,
        }
