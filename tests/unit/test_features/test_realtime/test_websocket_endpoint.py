"""Tests for the WebSocket endpoint and the realtime HTTP routes."""
from __future__ import annotations

import importlib
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from marketplace_realtime.app.exception_handlers import configure_exception_handlers
from marketplace_realtime.app.router import setup_routers
from marketplace_realtime.core.settings import AuthSettings, WebSocketSettings
from marketplace_realtime.features.auth import SessionAuthenticator
from marketplace_realtime.features.realtime.dependencies import (
    get_authenticator,
    get_message_store,
)
from marketplace_realtime.infra.realtime import ConnectionManager

# The package re-exports the APIRouter under the submodule's name
router_module = importlib.import_module("marketplace_realtime.features.realtime.router")

SESSIONS = {"sid-alice": {"passport": {"user": "alice"}}, "sid-bob": {"passport": {"user": "bob"}}}


class DictSessionStore:
    async def get_session_by_id(self, session_id):
        return SESSIONS.get(session_id)


class MemoryMessageStore:
    def __init__(self):
        self.messages = []

    async def create_message(self, sender_id, recipient_id, content, job_id=None):
        message = SimpleNamespace(
            id=f"m-{len(self.messages) + 1}",
            sender_id=sender_id,
            recipient_id=recipient_id,
            job_id=job_id,
            content=content,
            read=False,
            created_at=datetime.now(UTC),
        )
        self.messages.append(message)
        return message

    async def mark_message_as_read(self, message_id):
        return None


@pytest.fixture
def app():
    """Routers and exception handlers without the startup lifespan."""
    application = FastAPI()
    configure_exception_handlers(application)
    setup_routers(application, WebSocketSettings())
    application.dependency_overrides[get_authenticator] = lambda: SessionAuthenticator(
        DictSessionStore(), settings=AuthSettings(), timeout=1.0
    )
    application.dependency_overrides[get_message_store] = MemoryMessageStore
    return application


@pytest.fixture
def ws_manager():
    return ConnectionManager(settings=WebSocketSettings(heartbeat_interval=0, close_timeout=0.5))


@pytest.fixture
def live_manager(ws_manager):
    with patch.object(router_module, "get_manager_or_none", return_value=ws_manager):
        yield ws_manager


@pytest.fixture
def client(app):
    # One portal, so every socket in a test shares an event loop
    with TestClient(app) as test_client:
        yield test_client


# ──────────────────────────────────────────────────────────────
# Handshake
# ──────────────────────────────────────────────────────────────


class TestHandshake:
    def test_missing_cookie_closes_with_policy_violation(self, client, live_manager):
        """An unauthenticated upgrade is closed 1008 and never registered."""
        with patch.object(live_manager, "register", wraps=live_manager.register) as register:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws") as ws:
                    ws.receive_text()

        assert exc_info.value.code == 1008
        register.assert_not_called()
        assert live_manager.connection_count == 0

    def test_unknown_session_closes_with_policy_violation(self, client, live_manager):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws", headers={"cookie": "connect.sid=sid-nobody"}) as ws:
                ws.receive_text()

        assert exc_info.value.code == 1008
        assert live_manager.connection_count == 0

    def test_authenticated_connection_receives_connected(self, client, live_manager):
        """The first frame confirms the user id; disconnect deregisters."""
        with client.websocket_connect("/ws", headers={"cookie": "connect.sid=sid-alice"}) as ws:
            assert ws.receive_json() == {"type": "connected", "userId": "alice"}
            assert live_manager.is_connected("alice")

        assert not live_manager.is_connected("alice")
        assert live_manager.connection_count == 0

    def test_manager_not_running_closes_try_again_later(self, client):
        with patch.object(router_module, "get_manager_or_none", return_value=None):
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws", headers={"cookie": "connect.sid=sid-alice"}):
                    pass

        assert exc_info.value.code == 1013

    def test_capacity_exhausted_closes_try_again_later(self, client):
        full = ConnectionManager(settings=WebSocketSettings(heartbeat_interval=0, max_connections=1))
        full.registry.add(SimpleNamespace(user_id="someone-else"))

        with patch.object(router_module, "get_manager_or_none", return_value=full):
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws", headers={"cookie": "connect.sid=sid-alice"}) as ws:
                    ws.receive_text()

        assert exc_info.value.code == 1013
        assert not full.is_connected("alice")


# ──────────────────────────────────────────────────────────────
# Frames
# ──────────────────────────────────────────────────────────────


class TestFrames:
    def test_message_to_self_round_trip(self, client, live_manager):
        with client.websocket_connect("/ws", headers={"cookie": "connect.sid=sid-alice"}) as ws:
            ws.receive_json()
            ws.send_json({"type": "send_message", "recipientId": "alice", "content": "note to self"})
            frame = ws.receive_json()

        assert frame["type"] == "new_message"
        assert frame["message"]["senderId"] == "alice"
        assert frame["message"]["content"] == "note to self"

    def test_invalid_frame_gets_error_and_connection_survives(self, client, live_manager):
        with client.websocket_connect("/ws", headers={"cookie": "connect.sid=sid-alice"}) as ws:
            ws.receive_json()
            ws.send_text("{not json")
            assert ws.receive_json() == {"type": "error", "error": "Invalid message format"}

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_oversized_frame_closes_connection(self, client, live_manager):
        small = WebSocketSettings(max_message_size=1024)
        with patch.object(router_module, "ws_settings", small):
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws", headers={"cookie": "connect.sid=sid-alice"}) as ws:
                    ws.receive_json()
                    ws.send_text("x" * 2048)
                    ws.receive_text()

        assert exc_info.value.code == 1009

    def test_message_reaches_other_user(self, client, live_manager):
        """Two sockets on one app: bob sees alice's message."""
        with (
            client.websocket_connect("/ws", headers={"cookie": "connect.sid=sid-bob"}) as bob,
            client.websocket_connect("/ws", headers={"cookie": "connect.sid=sid-alice"}) as alice,
        ):
            bob.receive_json()
            alice.receive_json()

            alice.send_json({"type": "send_message", "recipientId": "bob", "content": "hello"})

            echoed = alice.receive_json()
            delivered = bob.receive_json()

        assert echoed["message"]["id"] == delivered["message"]["id"]
        assert delivered["message"]["recipientId"] == "bob"


# ──────────────────────────────────────────────────────────────
# HTTP routes
# ──────────────────────────────────────────────────────────────


class TestHttpRoutes:
    @pytest.mark.asyncio
    async def test_stats_without_manager_is_503(self, app):
        with patch.object(router_module, "get_manager_or_none", return_value=None):
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
                response = await ac.get("/ws/stats")

        assert response.status_code == 503
        assert response.headers["content-type"].startswith("application/problem+json")
        assert response.json()["detail"] == "WebSocket manager not initialized"

    @pytest.mark.asyncio
    async def test_stats_with_manager(self, app, ws_manager):
        with patch.object(router_module, "get_manager_or_none", return_value=ws_manager):
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
                response = await ac.get("/ws/stats")

        assert response.status_code == 200
        assert response.json() == {
            "total_connections": 0,
            "connected_users": 0,
            "backend": "local",
            "heartbeat_interval": 0.0,
        }

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/metrics")

        assert response.status_code == 200
        assert "websocket_connections_total" in response.text
