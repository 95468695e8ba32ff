"""WebSocket router for realtime messaging.

Endpoints:
- GET /ws: WebSocket upgrade (session cookie required)
- GET /ws/stats: Connection statistics
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from marketplace_realtime.core.exceptions import ServiceUnavailableException
from marketplace_realtime.core.settings import get_websocket_settings
from marketplace_realtime.features.auth import SessionAuthenticator
from marketplace_realtime.features.messaging.handlers import MessageRouter
from marketplace_realtime.features.messaging.repository import MessageStore
from marketplace_realtime.features.messaging.schemas import ConnectedFrame
from marketplace_realtime.features.realtime.dependencies import (
    get_authenticator,
    get_manager_or_none,
    get_message_store,
)
from marketplace_realtime.features.realtime.schemas import ConnectionStats
from marketplace_realtime.infra.logging import clear_log_context, set_log_context
from marketplace_realtime.infra.metrics.prometheus import websocket_handshakes_total

if TYPE_CHECKING:
    from marketplace_realtime.infra.realtime.registry import Connection

logger = logging.getLogger(__name__)

ws_settings = get_websocket_settings()
router = APIRouter(prefix=ws_settings.path, tags=["realtime"])


@router.websocket("")
async def websocket_endpoint(
    websocket: WebSocket,
    authenticator: Annotated[SessionAuthenticator, Depends(get_authenticator)],
    store: Annotated[MessageStore, Depends(get_message_store)],
) -> None:
    """WebSocket connection endpoint.

    The handshake must carry the HTTP application's session cookie. An
    unauthenticated upgrade is closed with 1008 before any frame is sent.

    Message Protocol:
        Client → Server:
        - {"type": "send_message", "recipientId": "...", "content": "...", "jobId": null}
        - {"type": "typing", "recipientId": "...", "isTyping": true}
        - {"type": "mark_read", "messageId": "...", "conversationUserId": "..."}
        - {"type": "ping"} / {"type": "pong"}

        Server → Client:
        - {"type": "connected", "userId": "..."}
        - {"type": "new_message", "message": {...}}
        - {"type": "typing", "senderId": "...", "isTyping": true}
        - {"type": "message_read", "messageId": "...", "readBy": "..."}
        - {"type": "notification", ...}
        - {"type": "error", "error": "..."}
        - {"type": "ping"} / {"type": "pong"}
    """
    manager = get_manager_or_none()
    if not ws_settings.enabled or manager is None:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Server not ready")
        return

    await websocket.accept()

    result = await authenticator.authenticate_connection(websocket)
    user_id = result.user_id
    if user_id is None:
        reason = result.failure.value if result.failure else "unknown"
        websocket_handshakes_total.labels(outcome=reason).inc()
        logger.info("WebSocket handshake rejected", extra={"reason": reason})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication required")
        return

    try:
        connection = await manager.register(websocket, user_id)
    except ConnectionRefusedError as e:
        websocket_handshakes_total.labels(outcome="capacity").inc()
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason=str(e))
        return

    websocket_handshakes_total.labels(outcome="accepted").inc()
    set_log_context(user_id=user_id, connection_id=connection.connection_id)
    try:
        manager.send(connection, ConnectedFrame(user_id=user_id))
        await _receive_loop(websocket, connection, MessageRouter(manager, store))
    except WebSocketDisconnect:
        logger.debug("WebSocket client disconnected")
    except Exception:
        logger.exception("WebSocket connection failed")
    finally:
        await manager.unregister(connection)
        clear_log_context()


async def _receive_loop(
    websocket: WebSocket,
    connection: Connection,
    message_router: MessageRouter,
) -> None:
    """Feed inbound frames to the router until the socket closes."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return

        raw = message.get("text")
        if raw is None:
            raw = message.get("bytes")
        if raw is None:
            continue

        size = len(raw.encode()) if isinstance(raw, str) else len(raw)
        if size > ws_settings.max_message_size:
            logger.warning(
                "Inbound frame too large, closing",
                extra={"size": size, "limit": ws_settings.max_message_size},
            )
            await connection.close(code=status.WS_1009_MESSAGE_TOO_BIG, reason="Message too big")
            return

        await message_router.handle(connection, raw)


@router.get(
    "/stats",
    response_model=ConnectionStats,
    summary="Get WebSocket connection statistics",
    description="Returns connection and user counts for this process.",
)
async def get_stats() -> ConnectionStats:
    """Get current WebSocket connection statistics."""
    manager = get_manager_or_none()
    if manager is None:
        raise ServiceUnavailableException(
            detail="WebSocket manager not initialized",
            extra={"component": "realtime"},
        )
    return ConnectionStats(**manager.stats())
