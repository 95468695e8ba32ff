"""Liveness supervision for registered connections.

Every tick each connection either proves it answered the previous ping
(``alive`` is True again) or is terminated and deregistered. A connection
that stays silent is therefore pruned within two intervals.

The ping is a JSON ``{"type": "ping"}`` frame rather than a protocol-level
ping, and clients answer with ``{"type": "pong"}``. Any other inbound frame
also sets ``alive``, so a client that only chats is never pruned.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from marketplace_realtime.infra.metrics.prometheus import (
    websocket_heartbeat_terminations_total,
)
from marketplace_realtime.infra.realtime.registry import encode_frame

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from marketplace_realtime.infra.realtime.registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)

PING_FRAME = encode_frame({"type": "ping"})

# Going away: lets clients tell a heartbeat kill from a policy rejection
HEARTBEAT_CLOSE_CODE = 1001
HEARTBEAT_CLOSE_REASON = "Heartbeat timeout"


class LivenessSupervisor:
    """Periodic ping/prune loop over a ConnectionRegistry.

    Args:
        registry: Connections to supervise.
        interval: Seconds between ticks; a non-positive value disables the loop.
        terminate: Coroutine that deregisters and closes a dead connection.
            Defaults to removing it from ``registry`` and closing it with 1001.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        interval: float = 30.0,
        terminate: Callable[[Connection], Awaitable[None]] | None = None,
    ) -> None:
        self._registry = registry
        self._interval = interval
        self._terminate_connection = terminate or self._remove_and_close
        self._task: asyncio.Task[None] | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background loop. A non-positive interval disables it."""
        if self._interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._run(), name="ws-heartbeat")
        logger.debug("Heartbeat task started", extra={"interval": self._interval})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def tick(self) -> int:
        """Run one supervision pass.

        Returns:
            Number of connections terminated in this pass.
        """
        terminated = 0
        for connection in list(self._registry):
            try:
                if connection.alive:
                    connection.alive = False
                    connection.send(PING_FRAME)
                    continue
                await self._terminate(connection)
                terminated += 1
            except Exception:
                logger.exception(
                    "Heartbeat failed for connection",
                    extra={
                        "connection_id": connection.connection_id,
                        "user_id": connection.user_id,
                    },
                )
        return terminated

    async def _terminate(self, connection: Connection) -> None:
        websocket_heartbeat_terminations_total.inc()
        logger.info(
            "Connection missed heartbeat, terminating",
            extra={"connection_id": connection.connection_id, "user_id": connection.user_id},
        )
        await self._terminate_connection(connection)

    async def _remove_and_close(self, connection: Connection) -> None:
        # Deregister first so no fan-out reaches it while the close is in flight
        self._registry.remove(connection)
        await connection.close(code=HEARTBEAT_CLOSE_CODE, reason=HEARTBEAT_CLOSE_REASON)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.tick()


__all__ = ["HEARTBEAT_CLOSE_CODE", "HEARTBEAT_CLOSE_REASON", "PING_FRAME", "LivenessSupervisor"]
