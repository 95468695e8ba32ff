"""WebSocket configuration settings."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebSocketSettings(BaseSettings):
    """WebSocket server and connection settings.

    Environment variables use WS_ prefix.
    Example: WS_HEARTBEAT_INTERVAL=30
    """

    # ──────────────────────────────────────────────────────────────
    # Endpoint
    # ──────────────────────────────────────────────────────────────

    enabled: bool = Field(
        default=True,
        description="Enable WebSocket endpoints",
    )

    path: str = Field(
        default="/ws",
        pattern=r"^/.*$",
        description="Path of the upgrade endpoint",
    )

    # ──────────────────────────────────────────────────────────────
    # Connection limits
    # ──────────────────────────────────────────────────────────────

    max_connections: int = Field(
        default=10000,
        ge=1,
        le=100000,
        description="Maximum concurrent WebSocket connections per process",
    )

    max_message_size: int = Field(
        default=65536,
        ge=1024,
        le=1048576,
        description="Maximum incoming message size in bytes (default 64KB)",
    )

    outbound_buffer_size: int = Field(
        default=256,
        ge=1,
        le=10000,
        description="Frames buffered per connection before the oldest is dropped",
    )

    # ──────────────────────────────────────────────────────────────
    # Heartbeat and timeout settings
    # ──────────────────────────────────────────────────────────────

    heartbeat_interval: float = Field(
        default=30.0,
        ge=0,
        le=300,
        description="Interval between ping frames in seconds (0 to disable)",
    )

    auth_timeout: float = Field(
        default=10.0,
        ge=0.1,
        le=60.0,
        description="Upper bound on handshake session lookup in seconds",
    )

    close_timeout: float = Field(
        default=5.0,
        ge=0.1,
        le=30.0,
        description="Timeout for flushing buffered frames before closing",
    )

    # ──────────────────────────────────────────────────────────────
    # Cross-process fan-out
    # ──────────────────────────────────────────────────────────────

    pubsub_channel: str = Field(
        default="ws:fanout",
        max_length=100,
        description="Redis pub/sub channel used for cross-process delivery",
    )

    model_config = SettingsConfigDict(
        env_prefix="WS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
