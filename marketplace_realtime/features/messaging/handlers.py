"""Inbound frame dispatch for authenticated connections.

Each frame type is an independent transition:

- send_message: persist, then fan out ``new_message`` to sender and recipient
- typing: fan out ``typing`` to the recipient only, nothing persisted
- mark_read: persist the read flag, then fan out ``message_read`` to the partner
- ping / pong: heartbeat frames; a ping is answered with a pong

Every inbound frame, valid or not, marks the connection alive.

A failure in one frame never closes the connection or affects another.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, assert_never

from pydantic import ValidationError

from marketplace_realtime.core.database import NotFoundError
from marketplace_realtime.features.messaging.schemas import (
    INVALID_FORMAT_ERROR,
    SEND_FAILED_ERROR,
    ClientFrame,
    ClientFrameType,
    ErrorFrame,
    MarkReadFrame,
    MessagePayload,
    MessageReadFrame,
    NewMessageFrame,
    PingFrame,
    PongFrame,
    SendMessageFrame,
    TypingFrame,
    TypingIndicatorFrame,
    client_frame_adapter,
)
from marketplace_realtime.infra.metrics.prometheus import websocket_messages_received_total

if TYPE_CHECKING:
    from marketplace_realtime.features.messaging.repository import MessageStore
    from marketplace_realtime.infra.realtime.manager import ConnectionManager
    from marketplace_realtime.infra.realtime.registry import Connection

logger = logging.getLogger(__name__)

_CLIENT_FRAME_TYPES = frozenset(t.value for t in ClientFrameType)


class MessageRouter:
    """Parses inbound text frames and runs the matching handler."""

    def __init__(self, manager: ConnectionManager, store: MessageStore) -> None:
        self._manager = manager
        self._store = store

    async def handle(self, connection: Connection, raw: str | bytes) -> None:
        """Handle one raw frame received on ``connection``."""
        # Any inbound frame proves the socket is not half-open
        connection.alive = True
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError):
            # RecursionError: nesting deeper than the decoder's stack allows
            self._reject(connection, reason="invalid json")
            return

        frame_type = data.get("type") if isinstance(data, dict) else None
        if not isinstance(frame_type, str):
            self._reject(connection, reason="missing type")
            return

        if frame_type not in _CLIENT_FRAME_TYPES:
            websocket_messages_received_total.labels(message_type="unknown").inc()
            logger.warning(
                "Unknown frame type",
                extra={"frame_type": frame_type[:64], "connection_id": connection.connection_id},
            )
            return

        try:
            frame = client_frame_adapter.validate_python(data)
        except ValidationError as e:
            self._reject(connection, reason="validation", frame_type=frame_type, errors=e.error_count())
            return

        websocket_messages_received_total.labels(message_type=frame_type).inc()
        await self.dispatch(connection, frame)

    async def dispatch(self, connection: Connection, frame: ClientFrame) -> None:
        match frame:
            case SendMessageFrame():
                await self._send_message(connection, frame)
            case TypingFrame():
                await self._typing(connection, frame)
            case MarkReadFrame():
                await self._mark_read(connection, frame)
            case PingFrame():
                connection.alive = True
                self._manager.send(connection, PongFrame())
            case PongFrame():
                connection.alive = True
            case _:
                assert_never(frame)

    async def _send_message(self, connection: Connection, frame: SendMessageFrame) -> None:
        sender_id = connection.user_id
        try:
            message = await self._store.create_message(
                sender_id, frame.recipient_id, frame.content, frame.job_id
            )
        except Exception:
            logger.exception(
                "Failed to persist message",
                extra={"sender_id": sender_id, "recipient_id": frame.recipient_id},
            )
            self._manager.send(connection, ErrorFrame(error=SEND_FAILED_ERROR))
            return

        outbound = NewMessageFrame(message=MessagePayload.model_validate(message))
        await self._manager.fan_out(sender_id, outbound)
        if frame.recipient_id != sender_id:
            await self._manager.fan_out(frame.recipient_id, outbound)

        logger.info(
            "Message delivered",
            extra={
                "message_id": message.id,
                "sender_id": sender_id,
                "recipient_id": frame.recipient_id,
                "recipient_online": self._manager.is_connected(frame.recipient_id),
            },
        )

    async def _typing(self, connection: Connection, frame: TypingFrame) -> None:
        await self._manager.fan_out(
            frame.recipient_id,
            TypingIndicatorFrame(sender_id=connection.user_id, is_typing=frame.is_typing),
        )

    async def _mark_read(self, connection: Connection, frame: MarkReadFrame) -> None:
        try:
            await self._store.mark_message_as_read(frame.message_id)
        except NotFoundError:
            logger.warning(
                "Read receipt for unknown message",
                extra={"message_id": frame.message_id, "reader_id": connection.user_id},
            )
            return
        except Exception:
            logger.exception(
                "Failed to mark message as read",
                extra={"message_id": frame.message_id, "reader_id": connection.user_id},
            )
            return

        await self._manager.fan_out(
            frame.conversation_user_id,
            MessageReadFrame(message_id=frame.message_id, read_by=connection.user_id),
        )

    def _reject(self, connection: Connection, *, reason: str, **details: object) -> None:
        websocket_messages_received_total.labels(message_type="invalid").inc()
        logger.info(
            "Malformed frame",
            extra={"reason": reason, "connection_id": connection.connection_id, **details},
        )
        self._manager.send(connection, ErrorFrame(error=INVALID_FORMAT_ERROR))


__all__ = ["MessageRouter"]
