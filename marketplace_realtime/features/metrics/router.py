"""Prometheus metrics endpoint.

Endpoints:
    GET /metrics - Prometheus scrape endpoint

Metrics Exposed:
    WebSocket:
        - websocket_connections_total / websocket_users_connected
        - websocket_handshakes_total by outcome
        - websocket_messages_received_total / websocket_messages_sent_total by frame type
        - websocket_frames_dropped_total, websocket_heartbeat_terminations_total
        - websocket_fanouts_total (requests) by frame type
        - websocket_connection_duration_seconds, websocket_fanout_recipients

    Message store:
        - message_store_operation_seconds / message_store_errors_total by operation
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from marketplace_realtime.infra.metrics.prometheus import REGISTRY

router = APIRouter(tags=["observability"])


@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )
