"""Integration smoke tests for the REST and WebSocket surface (in-memory UoW)."""
from __future__ import annotations

import base64
import uuid
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from room_relay.api.deps import get_uow
from room_relay.app import create_app
from tests.conftest import FakeUoW, make_message


@asynccontextmanager
async def _no_lifespan(_app):
    yield


@pytest.fixture
def app_with_uow():
    app = create_app()
    # no Redis in tests: keep the in-process hub
    app.router.lifespan_context = _no_lifespan
    uow = FakeUoW()

    async def _override():
        yield uow

    @asynccontextmanager
    async def _uow_factory():
        yield uow

    app.dependency_overrides[get_uow] = _override
    app.state.uow_factory = _uow_factory
    return app, uow


@pytest.fixture
def client(app_with_uow):
    app, _ = app_with_uow
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def uow(app_with_uow):
    _, uow = app_with_uow
    return uow


def _frame(event_type: str, **data) -> dict:
    return {"type": event_type, "data": data}


class TestHealth:
    def test_healthz(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_request_id_is_echoed(self, client):
        resp = client.get("/healthz", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"


class TestRooms:
    def test_create_room(self, client, uow):
        resp = client.post("/api/v1/rooms", json={"roomName": "  Lobby "})
        assert resp.status_code == 201
        body = resp.json()
        assert body["roomName"] == "Lobby"
        assert body["roomId"] in uow.rooms._rooms

    def test_create_room_without_name(self, client):
        resp = client.post("/api/v1/rooms", json={})
        assert resp.status_code == 201
        assert resp.json()["roomName"] is None

    def test_messages_for_unknown_room(self, client):
        resp = client.get("/api/v1/rooms/nope/messages")
        assert resp.status_code == 404

    def test_messages_are_canonical(self, client, uow):
        room_id = client.post("/api/v1/rooms", json={"roomName": "x"}).json()["roomId"]
        msg = make_message(room_id=room_id)
        uow.messages._messages[msg.message_id] = msg

        resp = client.get(f"/api/v1/rooms/{room_id}/messages")

        assert resp.status_code == 200
        (record,) = resp.json()
        assert record["messageId"] == str(msg.message_id)
        assert base64.b64decode(record["ciphertext"]) == msg.ciphertext
        assert record["status"] == "sent"

    def test_limit_must_be_positive(self, client):
        resp = client.get("/api/v1/rooms/room-1/messages", params={"limit": 0})
        assert resp.status_code == 422


class TestWebSocket:
    def test_ping(self, client):
        with client.websocket_connect("/ws/relay") as ws:
            ws.send_json(_frame("ping"))
            assert ws.receive_json()["type"] == "pong"

    def test_bad_frames_get_errors(self, client):
        with client.websocket_connect("/ws/relay") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["data"]["code"] == "invalid_payload"
            ws.send_json(_frame("shout"))
            assert ws.receive_json()["data"]["code"] == "unknown_type"
            ws.send_json(_frame("join", roomId=""))
            assert ws.receive_json()["data"]["code"] == "invalid_data"

    def test_handler_failure_keeps_socket_open(self, app_with_uow, client):
        app, _ = app_with_uow

        @asynccontextmanager
        async def _broken_factory():
            raise RuntimeError("pool exhausted")
            yield

        app.state.uow_factory = _broken_factory
        with client.websocket_connect("/ws/relay") as ws:
            ws.send_json(_frame("join", roomId="room-1"))
            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["data"]["code"] == "internal_error"
            ws.send_json(_frame("ping"))
            assert ws.receive_json()["type"] == "pong"

    def test_join_fresh_room_mints_identity(self, client):
        with client.websocket_connect("/ws/relay") as ws:
            ws.send_json(_frame("join", roomId="fresh-room", displayName="Alice"))
            identity = ws.receive_json()
            history = ws.receive_json()

        assert identity["type"] == "identity"
        assert uuid.UUID(identity["data"]["userId"])
        assert identity["data"]["displayName"] == "Alice"
        assert history == {"type": "history", "data": []}

    def test_send_relays_and_acks(self, client, uow):
        iv = base64.b64encode(bytes(12)).decode()
        ct = base64.b64encode(b"sealed").decode()
        message_id = str(uuid.uuid4())

        with client.websocket_connect("/ws/relay") as alice, client.websocket_connect("/ws/relay") as bob:
            alice.send_json(_frame("join", roomId="room-42", userId="alice", displayName="Alice"))
            assert [alice.receive_json()["type"] for _ in range(2)] == ["identity", "history"]
            bob.send_json(_frame("join", roomId="room-42", userId="bob", displayName="Bob"))
            assert [bob.receive_json()["type"] for _ in range(2)] == ["identity", "history"]
            presence = alice.receive_json()
            assert presence == {"type": "presence", "data": {"userId": "bob", "displayName": "Bob"}}

            alice.send_json(_frame(
                "send", messageId=message_id, roomId="room-42", senderId="alice",
                displayName="Alice", iv=iv, ciphertext=ct,
            ))
            relayed = bob.receive_json()
            ack = alice.receive_json()

            assert relayed["type"] == "message"
            assert relayed["data"]["messageId"] == message_id
            assert relayed["data"]["ciphertext"] == ct
            assert ack["type"] == "message-ack"
            assert ack["data"]["ok"] is True
            assert ack["data"]["message"]["messageId"] == message_id

            bob.send_json(_frame("ack-delivered", messageId=message_id, userId="bob", roomId="room-42"))
            update = alice.receive_json()
            assert update["type"] == "status-update"
            assert update["data"]["status"] == "delivered"

        assert uuid.UUID(message_id) in uow.messages._messages
