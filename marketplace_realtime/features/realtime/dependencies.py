"""Dependency providers for the realtime endpoint.

Override in tests via ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from marketplace_realtime.core.settings import get_auth_settings
from marketplace_realtime.features.auth import SessionAuthenticator, SqlSessionStore
from marketplace_realtime.features.messaging.repository import MessageStore, SqlMessageStore
from marketplace_realtime.infra.realtime.manager import ConnectionManager, get_connection_manager


@lru_cache
def get_session_store() -> SqlSessionStore:
    from marketplace_realtime.infra.database import AsyncSessionLocal

    return SqlSessionStore(AsyncSessionLocal, table_name=get_auth_settings().session_table)


@lru_cache
def get_authenticator() -> SessionAuthenticator:
    return SessionAuthenticator(get_session_store())


@lru_cache
def get_message_store() -> MessageStore:
    from marketplace_realtime.infra.database import AsyncSessionLocal

    return SqlMessageStore(AsyncSessionLocal)


def get_manager_or_none() -> ConnectionManager | None:
    """Get connection manager, handling not-initialized case."""
    try:
        return get_connection_manager()
    except RuntimeError:
        return None


__all__ = [
    "get_authenticator",
    "get_manager_or_none",
    "get_message_store",
    "get_session_store",
]
