"""Modular Pydantic Settings v2 configuration.

Each domain has its own frozen settings class and environment prefix:
- APP_   application identity and server binding
- AUTH_  session cookie / session table layout
- DB_    message store and session table connection
- LOG_   logging
- REDIS_ optional cross-process fan-out
- WS_    WebSocket endpoint, heartbeat and buffering

Import settings via cached loaders:
    from marketplace_realtime.core.settings import get_websocket_settings
"""

from __future__ import annotations

from .app import AppSettings
from .auth import AuthSettings
from .database import DatabaseSettings
from .loader import (
    clear_all_settings_cache,
    get_app_settings,
    get_auth_settings,
    get_db_settings,
    get_logging_settings,
    get_redis_settings,
    get_websocket_settings,
)
from .logs import LoggingSettings
from .redis import RedisSettings
from .websocket import WebSocketSettings

__all__ = [
    "AppSettings",
    "AuthSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "RedisSettings",
    "WebSocketSettings",
    "clear_all_settings_cache",
    "get_app_settings",
    "get_auth_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_redis_settings",
    "get_websocket_settings",
]
