"""HTTP response schemas for the realtime endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ConnectionStats(BaseModel):
    """Statistics about this process's WebSocket connections."""

    total_connections: int = Field(..., ge=0)
    connected_users: int = Field(..., ge=0)
    backend: str = Field(..., description="Fan-out backend in use (local or redis)")
    heartbeat_interval: float = Field(..., ge=0, description="Seconds between pings")
