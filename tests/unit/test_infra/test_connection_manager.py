"""Unit tests for the ConnectionManager."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from marketplace_realtime.core.settings import WebSocketSettings
from marketplace_realtime.infra.metrics.prometheus import REGISTRY
from marketplace_realtime.infra.realtime import manager as manager_module
from marketplace_realtime.infra.realtime.backends import LocalFanOutBackend
from marketplace_realtime.infra.realtime.manager import ConnectionManager


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_adds_connection(self, manager, make_websocket):
        """Registering should add an open connection under the user id."""
        conn = await manager.register(make_websocket(), "user-1")

        assert manager.is_connected("user-1")
        assert manager.connection_count == 1
        assert conn.is_open

    @pytest.mark.asyncio
    async def test_register_refuses_over_capacity(self, registry, make_websocket):
        """The per-process limit should be enforced."""
        mgr = ConnectionManager(
            registry=registry,
            settings=WebSocketSettings(max_connections=1, heartbeat_interval=0),
        )
        await mgr.register(make_websocket(), "user-1")

        with pytest.raises(ConnectionRefusedError):
            await mgr.register(make_websocket(), "user-2")

        assert not mgr.is_connected("user-2")
        await mgr.stop()

    @pytest.mark.asyncio
    async def test_unregister_removes_and_closes(self, manager, make_websocket):
        """Unregistering should drop the user key and close the socket."""
        ws = make_websocket()
        conn = await manager.register(ws, "user-1")

        await manager.unregister(conn)

        assert not manager.is_connected("user-1")
        assert ws.close_code == 1000

    @pytest.mark.asyncio
    async def test_unregister_twice_is_safe(self, manager, make_websocket):
        """A second unregister (e.g. after a heartbeat kill) is a no-op."""
        conn = await manager.register(make_websocket(), "user-1")

        await manager.unregister(conn)
        await manager.unregister(conn)

        assert manager.connection_count == 0

    @pytest.mark.asyncio
    async def test_unregister_flushes_pending_frames(self, manager, make_websocket):
        """Frames queued before the close are still written."""
        ws = make_websocket()
        conn = await manager.register(ws, "user-1")
        manager.send(conn, {"type": "error", "error": "Invalid message format"})

        await manager.unregister(conn)

        assert ws.frame_types() == ["error"]


class TestDelivery:
    @pytest.mark.asyncio
    async def test_fan_out_serializes_models(self, manager, make_websocket):
        """Model frames go out camelCased to every connection of the user."""
        from marketplace_realtime.features.messaging.schemas import MessageReadFrame

        ws = make_websocket()
        conn = await manager.register(ws, "user-1")

        delivered = await manager.fan_out("user-1", MessageReadFrame(message_id="m-1", read_by="u-2"))
        await conn.flush(1.0)

        assert delivered == 1
        assert ws.frames() == [{"type": "message_read", "messageId": "m-1", "readBy": "u-2"}]

    @pytest.mark.asyncio
    async def test_broadcast_goes_through_backend(self, registry, ws_settings):
        """Broadcast should be delegated to the configured backend."""
        backend = MagicMock(spec=LocalFanOutBackend)
        backend.broadcast = AsyncMock(return_value=0)
        mgr = ConnectionManager(registry=registry, backend=backend, settings=ws_settings)

        await mgr.broadcast({"type": "notification"}, exclude_user_id="u-1")

        backend.broadcast.assert_awaited_once_with('{"type": "notification"}', exclude_user_id="u-1")

    @pytest.mark.asyncio
    async def test_stats(self, manager, make_websocket):
        """Stats should count connections and distinct users."""
        await manager.register(make_websocket(), "a")
        await manager.register(make_websocket(), "a")
        await manager.register(make_websocket(), "b")

        stats = manager.stats()

        assert stats["total_connections"] == 3
        assert stats["connected_users"] == 2
        assert stats["backend"] == "local"


def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetrics:
    @pytest.mark.asyncio
    async def test_heartbeat_prune_updates_connection_metrics(self, manager, make_websocket):
        """A pruned connection leaves the gauges and records its duration."""
        ws = make_websocket()
        conn = await manager.register(ws, "user-1")
        durations = _sample("websocket_connection_duration_seconds_count")
        assert _sample("websocket_connections_total") == 1

        conn.alive = False
        assert await manager.supervisor.tick() == 1

        assert _sample("websocket_connections_total") == 0
        assert _sample("websocket_users_connected") == 0
        assert _sample("websocket_connection_duration_seconds_count") == durations + 1
        assert ws.close_code == 1001

        # The endpoint's own unregister afterwards is a no-op
        await manager.unregister(conn)
        assert _sample("websocket_connection_duration_seconds_count") == durations + 1

    @pytest.mark.asyncio
    async def test_sent_counts_queued_frames_only(self, manager, make_websocket):
        """Fan-out to an offline user is a request but not a sent frame."""
        sent_before = _sample("websocket_messages_sent_total", message_type="typing")
        requests_before = _sample("websocket_fanouts_total", message_type="typing")
        frame = {"type": "typing", "senderId": "u-2", "isTyping": True}

        assert await manager.fan_out("offline", frame) == 0
        assert _sample("websocket_messages_sent_total", message_type="typing") == sent_before

        await manager.register(make_websocket(), "online")
        await manager.register(make_websocket(), "online")
        assert await manager.fan_out("online", frame) == 2

        assert _sample("websocket_messages_sent_total", message_type="typing") == sent_before + 2
        assert _sample("websocket_fanouts_total", message_type="typing") == requests_before + 2


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_closes_all_connections(self, registry, ws_settings, make_websocket):
        """Shutdown should close every socket with 1001."""
        mgr = ConnectionManager(registry=registry, settings=ws_settings)
        await mgr.start()
        sockets = [make_websocket() for _ in range(3)]
        for i, ws in enumerate(sockets):
            await mgr.register(ws, f"user-{i}")

        await mgr.stop()

        assert len(registry) == 0
        assert [ws.close_code for ws in sockets] == [1001, 1001, 1001]

    @pytest.mark.asyncio
    async def test_global_manager_lifecycle(self):
        """start/get/stop helpers manage a single local-only instance."""
        with pytest.raises(RuntimeError):
            manager_module.get_connection_manager()

        mgr = await manager_module.start_connection_manager()
        try:
            assert manager_module.get_connection_manager() is mgr
            assert await manager_module.start_connection_manager() is mgr
            assert mgr.backend.name == "local"
        finally:
            await manager_module.stop_connection_manager()

        with pytest.raises(RuntimeError):
            manager_module.get_connection_manager()

    @pytest.mark.asyncio
    async def test_redis_unreachable_falls_back_to_local(self, monkeypatch):
        """A failed Redis ping should leave the manager in local-only mode."""
        from redis.exceptions import ConnectionError as RedisConnectionError

        monkeypatch.setenv("REDIS_URL", "redis://localhost:1/0")
        client = MagicMock()
        client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        client.aclose = AsyncMock()

        with patch("redis.asyncio.Redis", return_value=client):
            mgr = await manager_module.start_connection_manager()
        try:
            assert mgr.backend.name == "local"
            client.aclose.assert_awaited_once()
        finally:
            await manager_module.stop_connection_manager()
