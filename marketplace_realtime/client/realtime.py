"""Reconnecting client for the realtime messaging endpoint.

One ``RealtimeClient`` owns one logical connection for one signed-in user:

    disconnected → connecting → connected → disconnected → (backoff) → connecting ...

It stops for good on ``close()``, when the user id becomes None, when the
server rejects the session (close code 1008), or after the reconnect cap
is exhausted.

Example:
    client = RealtimeClient(
        "wss://example.com/ws",
        user_id="u-1",
        cookie="connect.sid=s%3A...",
        on_new_message=lambda m: print(m.content),
    )
    client.start()
    await client.send_message("u-2", "hello")
    await client.close()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from marketplace_realtime.features.messaging.schemas import (
    ConnectedFrame,
    ErrorFrame,
    MarkReadFrame,
    MessagePayload,
    MessageReadFrame,
    NewMessageFrame,
    NotificationFrame,
    PingFrame,
    PongFrame,
    SendMessageFrame,
    TypingFrame,
    TypingIndicatorFrame,
    server_frame_adapter,
)

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

MAX_RECONNECT_ATTEMPTS = 5
BASE_DELAY_MS = 1000
MAX_DELAY_MS = 30000
POLICY_VIOLATION = 1008


def reconnect_delay(attempts: int) -> int:
    """Milliseconds to wait before the next reconnect, given reconnects made so far."""
    return min(BASE_DELAY_MS * 2**attempts, MAX_DELAY_MS)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class RealtimeClient:
    """asyncio client with exponential-backoff reconnection.

    Observable state: ``state``, ``is_connected``, ``messages`` (every
    ``new_message`` received, read flags kept current) and ``typing_users``.

    ``connect`` and ``sleep`` are injectable so the reconnect policy can be
    driven without a server or real delays.
    """

    def __init__(
        self,
        url: str,
        *,
        user_id: str | None = None,
        cookie: str | None = None,
        on_new_message: Callable[[MessagePayload], object] | None = None,
        on_notification: Callable[[dict[str, Any]], object] | None = None,
        on_frame: Callable[[BaseModel], object] | None = None,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        typing_timeout: float | None = 10.0,
        connect: Callable[..., Any] = ws_connect,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._url = url
        self._user_id = user_id
        self._cookie = cookie
        self._on_new_message = on_new_message
        self._on_notification = on_notification
        self._on_frame = on_frame
        self._max_reconnect_attempts = max_reconnect_attempts
        self._typing_timeout = typing_timeout
        self._connect = connect
        self._sleep = sleep
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._ws: ClientConnection | None = None
        self._task: asyncio.Task[None] | None = None
        self._reconnect_attempts = 0
        self._messages: list[MessagePayload] = []
        self._typing: dict[str, float] = {}
        self._connected_event = asyncio.Event()
        self._replies: set[asyncio.Task[bool]] = set()

    # ──────────────────────────────────────────────────────────────
    # Observable state
    # ──────────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._ws is not None

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def messages(self) -> list[MessagePayload]:
        return list(self._messages)

    @property
    def typing_users(self) -> frozenset[str]:
        """Peers currently typing; stale entries expire after ``typing_timeout``."""
        if self._typing_timeout is not None:
            cutoff = self._clock() - self._typing_timeout
            for peer, seen in list(self._typing.items()):
                if seen < cutoff:
                    del self._typing[peer]
        return frozenset(self._typing)

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """Wait until the client is connected. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
        except TimeoutError:
            return False
        return True

    # ──────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Begin connecting if a user is signed in and no loop is running."""
        if self._user_id is None or self._state is ConnectionState.CLOSED:
            return
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="realtime-client")

    async def set_user_id(self, user_id: str | None, cookie: str | None = None) -> None:
        """Switch the signed-in user. None signs out and closes for good."""
        if user_id is None:
            await self.close()
            self._user_id = None
            return
        if user_id == self._user_id and self._task is not None and not self._task.done():
            return
        await self._stop()
        self._user_id = user_id
        if cookie is not None:
            self._cookie = cookie
        self._reconnect_attempts = 0
        self._state = ConnectionState.DISCONNECTED
        self.start()

    async def close(self) -> None:
        """Close the connection and cancel any pending reconnect."""
        await self._stop()
        self._state = ConnectionState.CLOSED

    async def _stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self._on_disconnected()

    # ──────────────────────────────────────────────────────────────
    # Outbound operations (dropped when not connected)
    # ──────────────────────────────────────────────────────────────

    async def send_message(self, recipient_id: str, content: str, job_id: str | None = None) -> bool:
        return await self._send(
            SendMessageFrame(recipient_id=recipient_id, content=content, job_id=job_id)
        )

    async def send_typing(self, recipient_id: str, is_typing: bool) -> bool:
        return await self._send(TypingFrame(recipient_id=recipient_id, is_typing=is_typing))

    async def mark_as_read(self, message_id: str, conversation_user_id: str) -> bool:
        return await self._send(
            MarkReadFrame(message_id=message_id, conversation_user_id=conversation_user_id)
        )

    async def _send(self, frame: BaseModel) -> bool:
        ws = self._ws
        if ws is None or self._state is not ConnectionState.CONNECTED:
            logger.debug("Not connected, frame dropped", extra={"frame_type": getattr(frame, "type", None)})
            return False
        try:
            await ws.send(frame.model_dump_json(by_alias=True))
        except ConnectionClosed:
            return False
        return True

    # ──────────────────────────────────────────────────────────────
    # Connection loop
    # ──────────────────────────────────────────────────────────────

    async def _run(self) -> None:
        while True:
            close_code = await self._connect_once()
            if close_code == POLICY_VIOLATION:
                logger.warning("Session rejected by server, not reconnecting")
                return
            if self._reconnect_attempts >= self._max_reconnect_attempts:
                logger.warning(
                    "Reconnect attempts exhausted",
                    extra={"attempts": self._reconnect_attempts},
                )
                return
            delay = reconnect_delay(self._reconnect_attempts)
            logger.info(
                "Reconnecting",
                extra={"delay_ms": delay, "attempt": self._reconnect_attempts + 1},
            )
            await self._sleep(delay / 1000)
            self._reconnect_attempts += 1

    async def _connect_once(self) -> int | None:
        """Open one connection and read until it closes. Returns the close code."""
        self._state = ConnectionState.CONNECTING
        headers = {"Cookie": self._cookie} if self._cookie else {}
        close_code: int | None = None
        try:
            async with self._connect(self._url, additional_headers=headers) as ws:
                self._ws = ws
                self._state = ConnectionState.CONNECTED
                self._reconnect_attempts = 0
                self._connected_event.set()
                logger.info("Realtime connection open", extra={"url": self._url})
                async for raw in ws:
                    self._handle_raw(raw)
                close_code = getattr(ws, "close_code", None)
        except ConnectionClosed as e:
            close_code = e.rcvd.code if e.rcvd is not None else None
            logger.info("Realtime connection closed", extra={"code": close_code})
        except (OSError, TimeoutError, WebSocketException) as e:
            logger.warning("Realtime connection failed", extra={"error": str(e)})
        finally:
            self._ws = None
            self._on_disconnected()
        return close_code

    def _on_disconnected(self) -> None:
        self._connected_event.clear()
        self._typing.clear()
        if self._state is not ConnectionState.CLOSED:
            self._state = ConnectionState.DISCONNECTED

    # ──────────────────────────────────────────────────────────────
    # Inbound frames
    # ──────────────────────────────────────────────────────────────

    def _handle_raw(self, raw: str | bytes) -> None:
        try:
            frame = server_frame_adapter.validate_json(raw)
        except ValidationError as e:
            logger.error("Unparseable frame from server", extra={"errors": e.error_count()})
            return
        try:
            self.handle_frame(frame)
        except Exception:
            logger.exception("Frame handler failed", extra={"frame_type": frame.type})

    def handle_frame(self, frame: BaseModel) -> None:
        """Apply one server frame to local state and invoke callbacks."""
        match frame:
            case ConnectedFrame(user_id=user_id):
                logger.info("Authenticated as user", extra={"user_id": user_id})
            case NewMessageFrame(message=message):
                self._messages.append(message)
                if self._on_new_message is not None:
                    self._on_new_message(message)
            case TypingIndicatorFrame(sender_id=sender_id, is_typing=is_typing):
                if is_typing:
                    self._typing[sender_id] = self._clock()
                else:
                    self._typing.pop(sender_id, None)
            case MessageReadFrame(message_id=message_id):
                for message in self._messages:
                    if message.id == message_id:
                        message.read = True
            case NotificationFrame():
                if self._on_notification is not None:
                    self._on_notification(frame.model_dump())
            case ErrorFrame(error=error):
                logger.error("Server reported error", extra={"error": error})
            case PingFrame():
                if self._ws is not None:
                    reply = asyncio.create_task(self._send(PongFrame()))
                    self._replies.add(reply)
                    reply.add_done_callback(self._replies.discard)
            case PongFrame():
                pass
        if self._on_frame is not None:
            self._on_frame(frame)


__all__ = [
    "MAX_RECONNECT_ATTEMPTS",
    "ConnectionState",
    "RealtimeClient",
    "reconnect_delay",
]
