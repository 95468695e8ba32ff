"""Direct messaging: persistence, wire frames, routing and notifications."""

from marketplace_realtime.features.messaging.handlers import MessageRouter
from marketplace_realtime.features.messaging.models import ChatMessage
from marketplace_realtime.features.messaging.notifications import broadcast_to_all, notify_user
from marketplace_realtime.features.messaging.repository import (
    MessageRepository,
    MessageStore,
    SqlMessageStore,
)

__all__ = [
    "ChatMessage",
    "MessageRepository",
    "MessageRouter",
    "MessageStore",
    "SqlMessageStore",
    "broadcast_to_all",
    "notify_user",
]
