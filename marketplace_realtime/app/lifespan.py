"""Application lifespan management.

Startup Order:
1. Logging and build info metric
2. Database (message store and session table), tables created for SQLite only
3. WebSocket connection manager (Redis fan-out when configured)

Shutdown Order: Reverse of startup
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from marketplace_realtime.core.settings import (
    get_app_settings,
    get_auth_settings,
    get_db_settings,
    get_redis_settings,
    get_websocket_settings,
)
from marketplace_realtime.infra.logging import setup_logging
from marketplace_realtime.infra.metrics.prometheus import app_info

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start and stop the database and the connection manager."""
    from marketplace_realtime.infra.database import close_database, create_tables, init_database
    from marketplace_realtime.infra.realtime import (
        start_connection_manager,
        stop_connection_manager,
    )

    setup_logging()

    app_settings = get_app_settings()
    db_settings = get_db_settings()
    ws_settings = get_websocket_settings()
    auth_settings = get_auth_settings()

    app_info.info(
        {
            "service": app_settings.service_name,
            "version": app_settings.version,
            "environment": app_settings.environment,
        }
    )
    logger.info(
        "Starting application",
        extra={
            "service": app_settings.service_name,
            "version": app_settings.version,
            "environment": app_settings.environment,
        },
    )

    if not auth_settings.verify_signature:
        logger.warning(
            "AUTH_SESSION_SECRET not set: session cookies are not signature-checked",
            extra={"cookie_name": auth_settings.session_cookie_name},
        )

    await init_database()
    if not db_settings.is_configured:
        from marketplace_realtime.features.auth.session_store import SqlSessionStore
        from marketplace_realtime.infra.database import AsyncSessionLocal, engine

        # Local SQLite: nothing else owns the schema
        await create_tables()
        await SqlSessionStore(AsyncSessionLocal, auth_settings.session_table).create_table(engine)

    if ws_settings.enabled:
        manager = await start_connection_manager()
        logger.info(
            "WebSocket connection manager initialized",
            extra={
                "backend": manager.backend.name,
                "redis_configured": get_redis_settings().is_configured,
            },
        )

    try:
        yield
    finally:
        if ws_settings.enabled:
            await stop_connection_manager()
        await close_database()
        logger.info("Application shutdown complete")
