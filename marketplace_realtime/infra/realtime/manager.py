"""WebSocket connection manager.

Composes the process-local ConnectionRegistry, a FanOutBackend and the
LivenessSupervisor, and owns connection lifecycle (register, unregister,
shutdown) plus connection metrics.

The manager supports two delivery modes:
1. Local-only: frames only reach sockets held by this process
2. Redis pub/sub: frames reach a user's sockets on every process
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from marketplace_realtime.core.settings import get_redis_settings, get_websocket_settings
from marketplace_realtime.infra.metrics.prometheus import (
    websocket_connection_duration_seconds,
    websocket_connections_total,
    websocket_fanouts_total,
    websocket_messages_sent_total,
    websocket_users_connected,
)
from marketplace_realtime.infra.realtime.backends import (
    FanOutBackend,
    LocalFanOutBackend,
    RedisFanOutBackend,
)
from marketplace_realtime.infra.realtime.heartbeat import (
    HEARTBEAT_CLOSE_CODE,
    HEARTBEAT_CLOSE_REASON,
    LivenessSupervisor,
)
from marketplace_realtime.infra.realtime.registry import (
    Connection,
    ConnectionRegistry,
    Frame,
    encode_frame,
)

if TYPE_CHECKING:
    from starlette.websockets import WebSocket

    from marketplace_realtime.core.settings import WebSocketSettings

logger = logging.getLogger(__name__)


def _frame_type(frame: Frame) -> str:
    if isinstance(frame, str):
        return "raw"
    if isinstance(frame, dict):
        return str(frame.get("type", "unknown"))
    return str(getattr(frame, "type", "unknown"))


class ConnectionManager:
    """Tracks authenticated connections and delivers frames to users.

    Example:
        manager = ConnectionManager()
        await manager.start()

        connection = await manager.register(websocket, user_id)
        try:
            ...
        finally:
            await manager.unregister(connection)

        await manager.fan_out(user_id, {"type": "notification", "title": "Paid"})
    """

    def __init__(
        self,
        registry: ConnectionRegistry | None = None,
        backend: FanOutBackend | None = None,
        settings: WebSocketSettings | None = None,
    ) -> None:
        self._settings = settings or get_websocket_settings()
        self._registry = registry or ConnectionRegistry()
        self._backend = backend or LocalFanOutBackend(self._registry)
        self._supervisor = LivenessSupervisor(
            self._registry,
            interval=self._settings.heartbeat_interval,
            terminate=self._prune,
        )
        self._running = False

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def backend(self) -> FanOutBackend:
        return self._backend

    @property
    def supervisor(self) -> LivenessSupervisor:
        return self._supervisor

    @property
    def connection_count(self) -> int:
        """Total number of registered connections."""
        return len(self._registry)

    async def start(self) -> None:
        """Start the fan-out backend and the heartbeat loop."""
        if self._running:
            return
        self._running = True
        await self._backend.start()
        self._supervisor.start()
        logger.info(
            "Connection manager started",
            extra={
                "backend": self._backend.name,
                "heartbeat_interval": self._settings.heartbeat_interval,
            },
        )

    async def stop(self) -> None:
        """Stop background tasks and close every registered connection."""
        self._running = False
        await self._supervisor.stop()

        closed = 0
        for connection in list(self._registry):
            self._registry.remove(connection)
            await connection.close(code=1001, reason="Server shutdown")
            closed += 1

        await self._backend.stop()
        self._update_connection_metrics()
        logger.info("Connection manager stopped", extra={"connections_closed": closed})

    async def register(self, websocket: WebSocket, user_id: str) -> Connection:
        """Register an accepted, authenticated WebSocket for ``user_id``.

        Raises:
            ConnectionRefusedError: If the per-process connection limit is reached.
        """
        if len(self._registry) >= self._settings.max_connections:
            logger.warning(
                "Connection refused: max connections reached",
                extra={"max": self._settings.max_connections, "user_id": user_id},
            )
            raise ConnectionRefusedError("Maximum connections reached")

        connection = Connection(
            user_id=user_id,
            channel=websocket,
            buffer_size=self._settings.outbound_buffer_size,
        )
        connection.start()
        self._registry.add(connection)
        self._update_connection_metrics()

        logger.info(
            "WebSocket connection registered",
            extra={
                "connection_id": connection.connection_id,
                "user_id": user_id,
                "total_connections": len(self._registry),
            },
        )
        return connection

    async def unregister(
        self,
        connection: Connection,
        code: int = 1000,
        reason: str | None = None,
        *,
        flush: bool = True,
    ) -> None:
        """Deregister and close ``connection``. Safe to call more than once.

        With ``flush`` the close waits up to ``close_timeout`` for queued
        frames to be written first.
        """
        removed = self._registry.remove(connection)
        flush_timeout = self._settings.close_timeout if flush else 0.0
        await connection.close(code=code, reason=reason, flush_timeout=flush_timeout)
        if not removed:
            return

        duration = time.time() - connection.connected_at
        websocket_connection_duration_seconds.observe(duration)
        self._update_connection_metrics()
        logger.info(
            "WebSocket connection unregistered",
            extra={
                "connection_id": connection.connection_id,
                "user_id": connection.user_id,
                "duration_seconds": round(duration, 3),
                "total_connections": len(self._registry),
            },
        )

    def send(self, connection: Connection, frame: Frame) -> bool:
        """Queue ``frame`` on a single connection (replies, errors, pongs)."""
        sent = connection.send(encode_frame(frame))
        if sent:
            self._count_sent(_frame_type(frame), 1)
        return sent

    async def fan_out(self, user_id: str, frame: Frame) -> int:
        """Deliver ``frame`` to every connection ``user_id`` holds.

        Returns:
            Connections reached in this process.
        """
        message_type = _frame_type(frame)
        websocket_fanouts_total.labels(message_type=message_type).inc()
        delivered = await self._backend.send_to_user(user_id, encode_frame(frame))
        self._count_sent(message_type, delivered)
        return delivered

    async def broadcast(self, frame: Frame, exclude_user_id: str | None = None) -> int:
        """Deliver ``frame`` to every connected user except ``exclude_user_id``."""
        message_type = _frame_type(frame)
        websocket_fanouts_total.labels(message_type=message_type).inc()
        delivered = await self._backend.broadcast(
            encode_frame(frame), exclude_user_id=exclude_user_id
        )
        self._count_sent(message_type, delivered)
        return delivered

    def is_connected(self, user_id: str) -> bool:
        """Whether ``user_id`` holds a connection on this process."""
        return user_id in self._registry

    def stats(self) -> dict[str, Any]:
        return {
            "total_connections": len(self._registry),
            "connected_users": self._registry.user_count,
            "backend": self._backend.name,
            "heartbeat_interval": self._settings.heartbeat_interval,
        }

    async def _prune(self, connection: Connection) -> None:
        # Dead peer: close without flushing
        await self.unregister(
            connection, code=HEARTBEAT_CLOSE_CODE, reason=HEARTBEAT_CLOSE_REASON, flush=False
        )

    @staticmethod
    def _count_sent(message_type: str, delivered: int) -> None:
        if delivered:
            websocket_messages_sent_total.labels(message_type=message_type).inc(delivered)

    def _update_connection_metrics(self) -> None:
        websocket_connections_total.set(len(self._registry))
        websocket_users_connected.set(self._registry.user_count)


# Global manager instance
_manager: ConnectionManager | None = None


def get_connection_manager() -> ConnectionManager:
    """Get the global connection manager instance.

    Raises:
        RuntimeError: If manager not initialized
    """
    if _manager is None:
        raise RuntimeError(
            "Connection manager not initialized. Call start_connection_manager() first."
        )
    return _manager


async def start_connection_manager() -> ConnectionManager:
    """Initialize and start the global connection manager.

    Uses Redis pub/sub for fan-out if configured, otherwise runs local-only.
    """
    global _manager

    if _manager is not None:
        return _manager

    ws_settings = get_websocket_settings()
    redis_settings = get_redis_settings()
    registry = ConnectionRegistry()
    backend: FanOutBackend = LocalFanOutBackend(registry)

    if redis_settings.is_configured:
        from redis.asyncio import ConnectionPool, Redis
        from redis.exceptions import RedisError

        pool: ConnectionPool = ConnectionPool.from_url(
            redis_settings.url,
            **redis_settings.connection_pool_kwargs(),
        )
        redis_client = Redis(connection_pool=pool)
        try:
            await redis_client.ping()
        except RedisError as e:
            logger.warning(
                "Failed to connect to Redis for WebSocket fan-out, using local-only mode",
                extra={"error": str(e)},
            )
            await redis_client.aclose()
        else:
            backend = RedisFanOutBackend(
                registry,
                redis_client,
                channel=ws_settings.pubsub_channel,
                retry_delay=redis_settings.retry_delay,
                retry_max_delay=redis_settings.retry_max_delay,
            )

    _manager = ConnectionManager(registry=registry, backend=backend, settings=ws_settings)
    await _manager.start()
    return _manager


async def stop_connection_manager() -> None:
    """Stop and clear the global connection manager."""
    global _manager

    if _manager is not None:
        await _manager.stop()
        _manager = None


__all__ = [
    "ConnectionManager",
    "get_connection_manager",
    "start_connection_manager",
    "stop_connection_manager",
]
