"""Notification bridge for other subsystems.

Payment, dispute and job workflows push events to a user's open
connections through these functions instead of the message router:

    from marketplace_realtime.features.messaging.notifications import notify_user

    await notify_user(client_id, {"title": "Dispute updated", "disputeId": dispute.id})

Nothing is persisted here. Callers that need durability store the
event themselves before notifying.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from marketplace_realtime.features.messaging.schemas import NotificationFrame
from marketplace_realtime.infra.realtime.manager import get_connection_manager

if TYPE_CHECKING:
    from marketplace_realtime.infra.realtime.manager import ConnectionManager

logger = logging.getLogger(__name__)


def build_notification(payload: Mapping[str, Any]) -> NotificationFrame:
    """Merge ``payload`` into a ``notification`` frame.

    The ``type`` tag is reserved: a ``type`` key in the payload is replaced.
    """
    fields = dict(payload)
    replaced = fields.pop("type", None)
    if replaced is not None and replaced != "notification":
        logger.warning(
            "Notification payload 'type' overridden",
            extra={"payload_type": str(replaced)[:64]},
        )
    return NotificationFrame.model_validate(fields)


def _resolve(manager: ConnectionManager | None) -> ConnectionManager | None:
    if manager is not None:
        return manager
    try:
        return get_connection_manager()
    except RuntimeError:
        logger.warning("Notification dropped: connection manager not running")
        return None


async def notify_user(
    user_id: str,
    payload: Mapping[str, Any],
    *,
    manager: ConnectionManager | None = None,
) -> int:
    """Push ``{"type": "notification", **payload}`` to every connection of ``user_id``.

    Returns:
        Connections reached in this process.
    """
    target = _resolve(manager)
    if target is None:
        return 0
    delivered = await target.fan_out(user_id, build_notification(payload))
    logger.debug("Notification sent", extra={"user_id": user_id, "delivered": delivered})
    return delivered


async def broadcast_to_all(
    payload: Mapping[str, Any],
    *,
    exclude_user_id: str | None = None,
    manager: ConnectionManager | None = None,
) -> int:
    """Push ``payload`` unchanged to every connected user except ``exclude_user_id``.

    ``payload`` must already be a complete frame (it carries its own ``type``).
    """
    target = _resolve(manager)
    if target is None:
        return 0
    return await target.broadcast(dict(payload), exclude_user_id=exclude_user_id)


__all__ = ["broadcast_to_all", "build_notification", "notify_user"]
