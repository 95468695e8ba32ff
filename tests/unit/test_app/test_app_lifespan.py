"""Tests for application startup and shutdown ordering."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI

from marketplace_realtime.app.lifespan import lifespan


@pytest.fixture
def hooks():
    calls: list[str] = []

    def track(name, result=None):
        async def _hook(*args, **kwargs):
            calls.append(name)
            return result

        return AsyncMock(side_effect=_hook)

    manager = MagicMock()
    manager.backend.name = "local"
    session_store = MagicMock()
    session_store.return_value.create_table = track("create_session_table")

    with (
        patch("marketplace_realtime.app.lifespan.setup_logging"),
        patch("marketplace_realtime.infra.database.init_database", track("init_database")),
        patch("marketplace_realtime.infra.database.create_tables", track("create_tables")),
        patch("marketplace_realtime.infra.database.close_database", track("close_database")),
        patch(
            "marketplace_realtime.infra.realtime.start_connection_manager",
            track("start_manager", manager),
        ),
        patch("marketplace_realtime.infra.realtime.stop_connection_manager", track("stop_manager")),
        patch("marketplace_realtime.features.auth.session_store.SqlSessionStore", session_store),
    ):
        yield calls


class TestLifespan:
    @pytest.mark.asyncio
    async def test_startup_and_shutdown_order(self, hooks):
        """Database before the manager on startup; reverse on shutdown."""
        async with lifespan(FastAPI()):
            assert hooks == [
                "init_database",
                "create_tables",
                "create_session_table",
                "start_manager",
            ]

        assert hooks[-2:] == ["stop_manager", "close_database"]

    @pytest.mark.asyncio
    async def test_websocket_disabled_skips_manager(self, hooks, monkeypatch):
        monkeypatch.setenv("WS_ENABLED", "false")

        async with lifespan(FastAPI()):
            pass

        assert "start_manager" not in hooks
        assert "stop_manager" not in hooks
