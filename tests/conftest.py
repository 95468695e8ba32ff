"""Pytest configuration and shared fixtures.

Organization:
    - Environment: settings that keep tests off external infrastructure
    - WebSocket Fixtures: fake sockets, registry and connection manager
    - Database Fixtures: in-memory SQLite engine, session factory and stores
"""

from __future__ import annotations

import json
import os
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.websockets import WebSocketState

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("WS_HEARTBEAT_INTERVAL", "0")
os.environ.setdefault("LOG_JSON_LOGS", "false")


# ============================================================================
# Settings
# ============================================================================


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Reload settings from the environment for every test."""
    from marketplace_realtime.core.settings import clear_all_settings_cache

    clear_all_settings_cache()
    yield
    clear_all_settings_cache()


@pytest.fixture
def ws_settings():
    """WebSocket settings with the heartbeat loop disabled and short timeouts."""
    from marketplace_realtime.core.settings import WebSocketSettings

    return WebSocketSettings(
        heartbeat_interval=0,
        close_timeout=0.1,
        auth_timeout=0.5,
        max_connections=100,
        outbound_buffer_size=8,
    )


# ============================================================================
# WebSocket Fixtures
# ============================================================================


class FakeWebSocket:
    """Stand-in for a Starlette WebSocket that records what is written to it."""

    def __init__(self) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[str] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.send_text = AsyncMock(side_effect=self._record)
        self.close = AsyncMock(side_effect=self._close)

    async def _record(self, text: str) -> None:
        self.sent.append(text)

    async def _close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code
        self.close_reason = reason
        self.application_state = WebSocketState.DISCONNECTED

    def frames(self) -> list[dict[str, Any]]:
        """Decoded frames written so far."""
        return [json.loads(text) for text in self.sent]

    def frame_types(self) -> list[str]:
        return [frame["type"] for frame in self.frames()]


@pytest.fixture
def make_websocket():
    """Factory for FakeWebSocket instances.

    Example:
        def test_something(make_websocket):
            ws = make_websocket()
    """
    return FakeWebSocket


@pytest.fixture
def registry():
    from marketplace_realtime.infra.realtime import ConnectionRegistry

    return ConnectionRegistry()


@pytest.fixture
async def manager(registry, ws_settings):
    """Running ConnectionManager with the local fan-out backend."""
    from marketplace_realtime.infra.realtime import ConnectionManager

    mgr = ConnectionManager(registry=registry, settings=ws_settings)
    await mgr.start()
    try:
        yield mgr
    finally:
        await mgr.stop()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Async SQLAlchemy engine on a shared in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the messages table created."""
    from marketplace_realtime.core.database import Base
    from marketplace_realtime.features.messaging import models  # noqa: F401

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def message_store(session_factory):
    from marketplace_realtime.features.messaging import SqlMessageStore

    return SqlMessageStore(session_factory)
