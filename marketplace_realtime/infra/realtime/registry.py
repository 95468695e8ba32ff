"""Process-local registry of live WebSocket connections keyed by user id.

Registry operations are synchronous and never await, so under the
single-threaded event loop the invariant "a user id is a key iff it has at
least one connection" holds at every suspension point. Socket writes are
handed to a per-connection writer task through a bounded outbox.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import BaseModel
from starlette.websockets import WebSocketDisconnect, WebSocketState

from marketplace_realtime.infra.metrics.prometheus import (
    websocket_fanout_recipients,
    websocket_frames_dropped_total,
)

if TYPE_CHECKING:
    from starlette.websockets import WebSocket

logger = logging.getLogger(__name__)

Frame = BaseModel | Mapping[str, Any] | str


def encode_frame(frame: Frame) -> str:
    """Serialize an outbound frame to its JSON wire form."""
    if isinstance(frame, str):
        return frame
    if isinstance(frame, BaseModel):
        return frame.model_dump_json(by_alias=True)
    return json.dumps(frame, default=str)


@dataclass(eq=False)
class Connection:
    """A live WebSocket owned by one user.

    Instances compare by identity, so one user may hold many connections
    and each is removed individually.
    """

    user_id: str
    channel: WebSocket
    buffer_size: int = 256
    alive: bool = True
    connection_id: str = field(default_factory=lambda: str(uuid4()))
    connected_at: float = field(default_factory=time.time)
    _outbox: asyncio.Queue[str] = field(init=False, repr=False)
    _writer: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _closed: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self._outbox = asyncio.Queue(maxsize=self.buffer_size)

    @property
    def is_open(self) -> bool:
        """True while the socket is connected on both sides and not closing."""
        if self._closed:
            return False
        return (
            self.channel.client_state == WebSocketState.CONNECTED
            and self.channel.application_state == WebSocketState.CONNECTED
        )

    @property
    def pending(self) -> int:
        """Frames waiting in the outbox."""
        return self._outbox.qsize()

    def start(self) -> None:
        """Start the writer task draining the outbox into the socket."""
        if self._writer is None:
            self._writer = asyncio.create_task(
                self._drain(), name=f"ws-writer-{self.connection_id}"
            )

    def send(self, text: str) -> bool:
        """Queue a serialized frame without blocking.

        When the outbox is full the oldest queued frame is dropped.

        Returns:
            False if the connection is not open, True once queued.
        """
        if not self.is_open:
            return False
        if self._outbox.full():
            self._outbox.get_nowait()
            self._outbox.task_done()
            websocket_frames_dropped_total.inc()
            logger.warning(
                "Outbound buffer full, dropped oldest frame",
                extra={"connection_id": self.connection_id, "user_id": self.user_id},
            )
        self._outbox.put_nowait(text)
        return True

    async def flush(self, timeout: float) -> bool:
        """Wait until every queued frame has been written (or dropped).

        Returns:
            True if the outbox drained within ``timeout`` seconds.
        """
        try:
            await asyncio.wait_for(self._outbox.join(), timeout)
        except TimeoutError:
            return False
        return True

    async def close(
        self,
        code: int = 1000,
        reason: str | None = None,
        *,
        flush_timeout: float = 0.0,
    ) -> None:
        """Stop the writer and close the socket. Safe to call more than once."""
        if self._closed:
            return
        if flush_timeout > 0 and self._writer is not None and not self._writer.done():
            await self.flush(flush_timeout)
        self._closed = True

        if self._writer is not None:
            self._writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer
            self._writer = None

        if self.channel.application_state != WebSocketState.DISCONNECTED:
            try:
                await self.channel.close(code=code, reason=reason)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                # Peer already gone or close already sent
                logger.debug(
                    "Close on a closing socket ignored",
                    extra={"connection_id": self.connection_id, "error": str(e)},
                )

    async def _drain(self) -> None:
        while True:
            text = await self._outbox.get()
            try:
                await self.channel.send_text(text)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                self._closed = True
                logger.debug(
                    "Write to closing socket failed",
                    extra={"connection_id": self.connection_id, "error": str(e)},
                )
                self._discard_pending()
                return
            finally:
                self._outbox.task_done()

    def _discard_pending(self) -> None:
        while not self._outbox.empty():
            self._outbox.get_nowait()
            self._outbox.task_done()


class ConnectionRegistry:
    """Mapping of user id to that user's live connections.

    Example:
        registry = ConnectionRegistry()
        registry.add(conn)
        registry.fan_out(conn.user_id, {"type": "notification", "title": "hi"})
        registry.remove(conn)
    """

    def __init__(self) -> None:
        self._connections: dict[str, list[Connection]] = {}

    def add(self, connection: Connection) -> None:
        """Register ``connection`` under its user id."""
        self._connections.setdefault(connection.user_id, []).append(connection)

    def remove(self, connection: Connection) -> bool:
        """Remove ``connection`` by identity.

        Returns:
            True if it was registered.
        """
        owned = self._connections.get(connection.user_id)
        if owned is None:
            return False
        for index, candidate in enumerate(owned):
            if candidate is connection:
                del owned[index]
                break
        else:
            return False
        if not owned:
            del self._connections[connection.user_id]
        return True

    def get(self, user_id: str) -> tuple[Connection, ...]:
        """Snapshot of the connections registered for ``user_id``."""
        return tuple(self._connections.get(user_id, ()))

    def fan_out(self, user_id: str, frame: Frame) -> int:
        """Send ``frame`` to every open connection of ``user_id``.

        The frame is serialized once. Connections that are no longer open
        are skipped.

        Returns:
            Number of connections the frame was queued on.
        """
        owned = self._connections.get(user_id)
        if not owned:
            websocket_fanout_recipients.observe(0)
            return 0
        text = encode_frame(frame)
        delivered = sum(1 for conn in tuple(owned) if conn.send(text))
        websocket_fanout_recipients.observe(delivered)
        return delivered

    def broadcast(self, frame: Frame, exclude_user_id: str | None = None) -> int:
        """Send ``frame`` to every connected user except ``exclude_user_id``."""
        text = encode_frame(frame)
        delivered = 0
        for user_id in list(self._connections):
            if user_id == exclude_user_id:
                continue
            delivered += self.fan_out(user_id, text)
        return delivered

    def for_each_connection(self, fn: Callable[[Connection], object]) -> None:
        """Call ``fn`` on a snapshot of every registered connection.

        ``fn`` may add or remove connections while iterating.
        """
        for connection in list(self):
            fn(connection)

    def __iter__(self) -> Iterator[Connection]:
        for owned in list(self._connections.values()):
            yield from tuple(owned)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._connections

    def __len__(self) -> int:
        return sum(len(owned) for owned in self._connections.values())

    @property
    def user_ids(self) -> list[str]:
        """User ids with at least one registered connection."""
        return list(self._connections)

    @property
    def user_count(self) -> int:
        return len(self._connections)


__all__ = [
    "Connection",
    "ConnectionRegistry",
    "Frame",
    "encode_frame",
]
