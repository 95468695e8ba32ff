"""Real-time connection infrastructure.

Exports:
    - Connection / ConnectionRegistry: user id to live sockets
    - LivenessSupervisor: heartbeat ping and prune loop
    - FanOutBackend and its local / Redis implementations
    - ConnectionManager and its global lifecycle helpers
"""

from marketplace_realtime.infra.realtime.backends import (
    FanOutBackend,
    LocalFanOutBackend,
    RedisFanOutBackend,
)
from marketplace_realtime.infra.realtime.heartbeat import LivenessSupervisor
from marketplace_realtime.infra.realtime.manager import (
    ConnectionManager,
    get_connection_manager,
    start_connection_manager,
    stop_connection_manager,
)
from marketplace_realtime.infra.realtime.registry import (
    Connection,
    ConnectionRegistry,
    encode_frame,
)

__all__ = [
    "Connection",
    "ConnectionManager",
    "ConnectionRegistry",
    "FanOutBackend",
    "LivenessSupervisor",
    "LocalFanOutBackend",
    "RedisFanOutBackend",
    "encode_frame",
    "get_connection_manager",
    "start_connection_manager",
    "stop_connection_manager",
]
