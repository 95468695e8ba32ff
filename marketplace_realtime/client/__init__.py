"""Client-side reconnection manager for the realtime endpoint."""

from marketplace_realtime.client.realtime import (
    MAX_RECONNECT_ATTEMPTS,
    ConnectionState,
    RealtimeClient,
    reconnect_delay,
)

__all__ = [
    "MAX_RECONNECT_ATTEMPTS",
    "ConnectionState",
    "RealtimeClient",
    "reconnect_delay",
]
