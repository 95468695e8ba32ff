"""Unit tests for inbound frame dispatch."""
from __future__ import annotations

import json
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from marketplace_realtime.core.database import NotFoundError, RepositoryError
from marketplace_realtime.features.messaging.handlers import MessageRouter


class RecordingStore:
    """In-memory MessageStore that records call order."""

    def __init__(self, events: list[str] | None = None) -> None:
        self.events = events if events is not None else []
        self.created: list[SimpleNamespace] = []
        self.create_error: Exception | None = None
        self.read_error: Exception | None = None

    async def create_message(self, sender_id, recipient_id, content, job_id=None):
        self.events.append("persist")
        if self.create_error is not None:
            raise self.create_error
        message = SimpleNamespace(
            id=f"m-{len(self.created) + 1}",
            sender_id=sender_id,
            recipient_id=recipient_id,
            job_id=job_id,
            content=content,
            read=False,
            created_at=datetime(2025, 1, 1, tzinfo=UTC),
        )
        self.created.append(message)
        return message

    async def mark_message_as_read(self, message_id):
        self.events.append("mark_read")
        if self.read_error is not None:
            raise self.read_error


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def router(manager, store):
    return MessageRouter(manager, store)


async def _settle(*connections):
    for conn in connections:
        await conn.flush(1.0)


# ──────────────────────────────────────────────────────────────
# Test send_message
# ──────────────────────────────────────────────────────────────


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_sender_and_recipient_receive_persisted_message(
        self, manager, router, store, make_websocket
    ):
        """Both parties get new_message carrying the stored record."""
        alice_ws, bob_ws = make_websocket(), make_websocket()
        alice = await manager.register(alice_ws, "alice")
        bob = await manager.register(bob_ws, "bob")

        await router.handle(
            alice,
            json.dumps({"type": "send_message", "recipientId": "bob", "content": "hi", "jobId": "j-1"}),
        )
        await _settle(alice, bob)

        for ws in (alice_ws, bob_ws):
            (frame,) = ws.frames()
            assert frame["type"] == "new_message"
            assert frame["message"]["id"] == "m-1"
            assert frame["message"]["senderId"] == "alice"
            assert frame["message"]["recipientId"] == "bob"
            assert frame["message"]["jobId"] == "j-1"
            assert frame["message"]["read"] is False
        assert len(store.created) == 1

    @pytest.mark.asyncio
    async def test_every_sender_connection_is_echoed(self, manager, router, make_websocket):
        """All of the sender's tabs see their own message."""
        tab1, tab2 = make_websocket(), make_websocket()
        first = await manager.register(tab1, "alice")
        second = await manager.register(tab2, "alice")

        await router.handle(first, '{"type":"send_message","recipientId":"bob","content":"x"}')
        await _settle(first, second)

        assert tab1.frame_types() == ["new_message"]
        assert tab2.frame_types() == ["new_message"]

    @pytest.mark.asyncio
    async def test_persist_happens_before_delivery(self, manager, store, make_websocket):
        """No new_message is emitted before the record is stored."""
        events: list[str] = []
        store.events = events
        fan_out = manager.fan_out

        async def tracking_fan_out(user_id, frame):
            events.append(f"fan_out:{user_id}")
            return await fan_out(user_id, frame)

        manager.fan_out = tracking_fan_out
        router = MessageRouter(manager, store)
        conn = await manager.register(make_websocket(), "alice")

        await router.handle(conn, '{"type":"send_message","recipientId":"bob","content":"x"}')

        assert events == ["persist", "fan_out:alice", "fan_out:bob"]

    @pytest.mark.asyncio
    async def test_offline_recipient_still_persisted(self, manager, router, store, make_websocket):
        """Messages to offline users are stored; only the sender is notified."""
        ws = make_websocket()
        conn = await manager.register(ws, "alice")

        await router.handle(conn, '{"type":"send_message","recipientId":"bob","content":"later"}')
        await _settle(conn)

        assert store.created[0].recipient_id == "bob"
        assert ws.frame_types() == ["new_message"]

    @pytest.mark.asyncio
    async def test_message_to_self_delivered_once(self, manager, router, make_websocket):
        """Sender == recipient should not double-deliver."""
        ws = make_websocket()
        conn = await manager.register(ws, "alice")

        await router.handle(conn, '{"type":"send_message","recipientId":"alice","content":"note"}')
        await _settle(conn)

        assert ws.frame_types() == ["new_message"]

    @pytest.mark.asyncio
    async def test_persist_failure_reports_error_to_sender_only(
        self, manager, router, store, make_websocket
    ):
        """A store failure yields an error frame to the sender and nothing else."""
        store.create_error = RepositoryError("create_message failed")
        alice_ws, bob_ws = make_websocket(), make_websocket()
        alice = await manager.register(alice_ws, "alice")
        bob = await manager.register(bob_ws, "bob")

        await router.handle(alice, '{"type":"send_message","recipientId":"bob","content":"x"}')
        await _settle(alice, bob)

        assert alice_ws.frames() == [{"type": "error", "error": "Failed to send message"}]
        assert bob_ws.sent == []
        assert alice.is_open


# ──────────────────────────────────────────────────────────────
# Test typing
# ──────────────────────────────────────────────────────────────


class TestTyping:
    @pytest.mark.asyncio
    async def test_typing_goes_to_recipient_only(self, manager, router, store, make_websocket):
        """The typer gets no echo; nothing is persisted."""
        alice_ws, bob_ws = make_websocket(), make_websocket()
        alice = await manager.register(alice_ws, "alice")
        bob = await manager.register(bob_ws, "bob")

        await router.handle(alice, '{"type":"typing","recipientId":"bob","isTyping":true}')
        await _settle(alice, bob)

        assert bob_ws.frames() == [{"type": "typing", "senderId": "alice", "isTyping": True}]
        assert alice_ws.sent == []
        assert store.events == []


# ──────────────────────────────────────────────────────────────
# Test mark_read
# ──────────────────────────────────────────────────────────────


class TestMarkRead:
    @pytest.mark.asyncio
    async def test_read_receipt_sent_to_partner(self, manager, router, store, make_websocket):
        """The partner learns who read which message."""
        alice_ws, bob_ws = make_websocket(), make_websocket()
        alice = await manager.register(alice_ws, "alice")
        bob = await manager.register(bob_ws, "bob")

        await router.handle(
            bob, '{"type":"mark_read","messageId":"m-1","conversationUserId":"alice"}'
        )
        await _settle(alice, bob)

        assert store.events == ["mark_read"]
        assert alice_ws.frames() == [{"type": "message_read", "messageId": "m-1", "readBy": "bob"}]
        assert bob_ws.sent == []

    @pytest.mark.asyncio
    async def test_unknown_message_sends_nothing(self, manager, router, store, make_websocket):
        """A receipt for an unknown id is logged only."""
        store.read_error = NotFoundError("ChatMessage", {"id": "missing"})
        alice_ws, bob_ws = make_websocket(), make_websocket()
        alice = await manager.register(alice_ws, "alice")
        bob = await manager.register(bob_ws, "bob")

        await router.handle(
            bob, '{"type":"mark_read","messageId":"missing","conversationUserId":"alice"}'
        )
        await _settle(alice, bob)

        assert alice_ws.sent == []
        assert bob_ws.sent == []

    @pytest.mark.asyncio
    async def test_store_failure_sends_nothing(self, manager, router, store, make_websocket):
        """Persistence errors never produce a read receipt or an error frame."""
        store.read_error = RepositoryError("mark_message_as_read failed")
        alice_ws, bob_ws = make_websocket(), make_websocket()
        alice = await manager.register(alice_ws, "alice")
        bob = await manager.register(bob_ws, "bob")

        await router.handle(
            bob, '{"type":"mark_read","messageId":"m-1","conversationUserId":"alice"}'
        )
        await _settle(alice, bob)

        assert alice_ws.sent == []
        assert bob_ws.sent == []


# ──────────────────────────────────────────────────────────────
# Test malformed and unknown frames
# ──────────────────────────────────────────────────────────────


class TestMalformedFrames:
    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2, 3]",
            '{"content": "no type"}',
            '{"type": 5}',
            '{"type":"send_message","recipientId":"bob"}',
            '{"type":"typing","recipientId":"bob","isTyping":"maybe"}',
            "[" * 5000 + "]" * 5000,
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_frame_gets_error(self, manager, router, store, make_websocket, raw):
        """Unparseable or invalid frames get an error to the sender only."""
        ws = make_websocket()
        other_ws = make_websocket()
        conn = await manager.register(ws, "alice")
        other = await manager.register(other_ws, "bob")

        await router.handle(conn, raw)
        await _settle(conn, other)

        assert ws.frames() == [{"type": "error", "error": "Invalid message format"}]
        assert other_ws.sent == []
        assert store.events == []
        assert conn.is_open

    @pytest.mark.asyncio
    async def test_unknown_type_is_ignored(self, manager, router, store, make_websocket):
        """A well-formed frame of an unknown type produces no frames at all."""
        ws = make_websocket()
        conn = await manager.register(ws, "alice")

        await router.handle(conn, '{"type":"subscribe","channel":"x"}')
        await _settle(conn)

        assert ws.sent == []
        assert store.events == []

    @pytest.mark.asyncio
    async def test_connection_keeps_working_after_error(self, manager, router, make_websocket):
        """A bad frame does not affect the next one."""
        ws = make_websocket()
        conn = await manager.register(ws, "alice")

        await router.handle(conn, "{")
        await router.handle(conn, '{"type":"send_message","recipientId":"alice","content":"ok"}')
        await _settle(conn)

        assert ws.frame_types() == ["error", "new_message"]


# ──────────────────────────────────────────────────────────────
# Test liveness frames
# ──────────────────────────────────────────────────────────────


class TestLivenessFrames:
    @pytest.mark.asyncio
    async def test_pong_marks_alive(self, manager, router, make_websocket):
        """A pong answers the heartbeat."""
        ws = make_websocket()
        conn = await manager.register(ws, "alice")
        conn.alive = False

        await router.handle(conn, '{"type":"pong"}')
        await _settle(conn)

        assert conn.alive is True
        assert ws.sent == []

    @pytest.mark.asyncio
    async def test_ping_is_answered(self, manager, router, make_websocket):
        """A client ping gets a pong and counts as liveness."""
        ws = make_websocket()
        conn = await manager.register(ws, "alice")
        conn.alive = False

        await router.handle(conn, '{"type":"ping"}')
        await _settle(conn)

        assert conn.alive is True
        assert ws.frames() == [{"type": "pong"}]

    @pytest.mark.asyncio
    async def test_any_frame_marks_alive(self, manager, make_websocket):
        """Chat traffic counts as liveness for clients that never send pong."""
        store = AsyncMock()
        router = MessageRouter(manager, store)
        conn = await manager.register(make_websocket(), "alice")
        conn.alive = False

        await router.handle(conn, '{"type":"typing","recipientId":"bob","isTyping":false}')

        assert conn.alive is True

    @pytest.mark.asyncio
    async def test_deeply_nested_frame_keeps_connection_open(self, manager, router, make_websocket):
        """Nesting past the decoder's limit is a malformed frame, not a crash."""
        ws = make_websocket()
        conn = await manager.register(ws, "alice")

        await router.handle(conn, "[" * 5000 + "]" * 5000)
        await router.handle(conn, '{"type":"ping"}')
        await _settle(conn)

        assert ws.frame_types() == ["error", "pong"]
        assert manager.is_connected("alice")
