"""Pydantic schemas for the messaging wire protocol.

Frames are JSON objects tagged by ``type``; field names are camelCase on
the wire and snake_case in Python.

Frame Types:
- Client → Server: send_message, typing, mark_read, ping, pong
- Server → Client: connected, new_message, typing, message_read,
  notification, error, ping, pong
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class ClientFrameType(str, Enum):
    """Frame types sent from client to server."""

    SEND_MESSAGE = "send_message"
    TYPING = "typing"
    MARK_READ = "mark_read"
    PING = "ping"
    PONG = "pong"


class ServerFrameType(str, Enum):
    """Frame types sent from server to client."""

    CONNECTED = "connected"
    NEW_MESSAGE = "new_message"
    TYPING = "typing"
    MESSAGE_READ = "message_read"
    NOTIFICATION = "notification"
    ERROR = "error"
    PING = "ping"
    PONG = "pong"


INVALID_FORMAT_ERROR = "Invalid message format"
SEND_FAILED_ERROR = "Failed to send message"


class WireModel(BaseModel):
    """camelCase on the wire, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ──────────────────────────────────────────────────────────────
# Client → Server Frames
# ──────────────────────────────────────────────────────────────


class SendMessageFrame(WireModel):
    """Send a direct message to another user."""

    type: Literal["send_message"] = "send_message"
    recipient_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    job_id: str | None = None


class TypingFrame(WireModel):
    """Start or stop a typing indicator shown to one recipient."""

    type: Literal["typing"] = "typing"
    recipient_id: str = Field(..., min_length=1)
    is_typing: bool


class MarkReadFrame(WireModel):
    """Mark a received message as read and tell its sender."""

    type: Literal["mark_read"] = "mark_read"
    message_id: str = Field(..., min_length=1)
    conversation_user_id: str = Field(..., min_length=1)


class PingFrame(WireModel):
    type: Literal["ping"] = "ping"


class PongFrame(WireModel):
    type: Literal["pong"] = "pong"


ClientFrame = Annotated[
    SendMessageFrame | TypingFrame | MarkReadFrame | PingFrame | PongFrame,
    Field(discriminator="type"),
]
client_frame_adapter: TypeAdapter[ClientFrame] = TypeAdapter(ClientFrame)


# ──────────────────────────────────────────────────────────────
# Server → Client Frames
# ──────────────────────────────────────────────────────────────


class MessagePayload(WireModel):
    """A persisted chat message as sent to clients."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    id: str
    sender_id: str
    recipient_id: str
    job_id: str | None = None
    content: str
    read: bool = False
    created_at: datetime


class ConnectedFrame(WireModel):
    """Sent once, right after the handshake is authenticated."""

    type: Literal["connected"] = "connected"
    user_id: str


class NewMessageFrame(WireModel):
    type: Literal["new_message"] = "new_message"
    message: MessagePayload


class TypingIndicatorFrame(WireModel):
    type: Literal["typing"] = "typing"
    sender_id: str
    is_typing: bool


class MessageReadFrame(WireModel):
    type: Literal["message_read"] = "message_read"
    message_id: str
    read_by: str


class NotificationFrame(BaseModel):
    """Arbitrary payload pushed by another subsystem.

    Payload keys are passed through untouched (no camelCase conversion).
    """

    model_config = ConfigDict(extra="allow")

    type: Literal["notification"] = "notification"

    @property
    def payload(self) -> dict[str, Any]:
        """The notification fields without the ``type`` tag."""
        return dict(self.model_extra or {})


class ErrorFrame(WireModel):
    type: Literal["error"] = "error"
    error: str


ServerFrame = Annotated[
    ConnectedFrame
    | NewMessageFrame
    | TypingIndicatorFrame
    | MessageReadFrame
    | NotificationFrame
    | ErrorFrame
    | PingFrame
    | PongFrame,
    Field(discriminator="type"),
]
server_frame_adapter: TypeAdapter[ServerFrame] = TypeAdapter(ServerFrame)


__all__ = [
    "INVALID_FORMAT_ERROR",
    "SEND_FAILED_ERROR",
    "ClientFrame",
    "ClientFrameType",
    "ConnectedFrame",
    "ErrorFrame",
    "MarkReadFrame",
    "MessagePayload",
    "MessageReadFrame",
    "NewMessageFrame",
    "NotificationFrame",
    "PingFrame",
    "PongFrame",
    "SendMessageFrame",
    "ServerFrame",
    "ServerFrameType",
    "TypingFrame",
    "TypingIndicatorFrame",
    "client_frame_adapter",
    "server_frame_adapter",
]
