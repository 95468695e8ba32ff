"""Router registry and setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from marketplace_realtime.core.settings import get_websocket_settings
from marketplace_realtime.features.metrics.router import router as metrics_router

if TYPE_CHECKING:
    from fastapi import FastAPI

    from marketplace_realtime.core.settings import WebSocketSettings

logger = logging.getLogger(__name__)


def setup_routers(app: FastAPI, websocket_settings: WebSocketSettings | None = None) -> None:
    """Register all feature routers with the application."""
    websocket_settings = websocket_settings or get_websocket_settings()

    # No prefix: scraped at /metrics
    app.include_router(metrics_router)

    if websocket_settings.enabled:
        from marketplace_realtime.features.realtime.router import router as realtime_router

        app.include_router(realtime_router)
        logger.debug("Realtime router registered", extra={"path": websocket_settings.path})
