"""Shared test fixtures."""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import pytest

from room_relay.application.exceptions import IdentityConflictError, PersistenceError
from room_relay.domain.entities.message import Message
from room_relay.domain.entities.room import Room
from room_relay.domain.entities.user import User
from room_relay.domain.value_objects.enums import MessageStatus


def make_message(
    *,
    room_id: str = "room-1",
    sender_id: str = "user-1",
    message_id: UUID | None = None,
    ciphertext: bytes = b"\x01\x02\x03",
    iv: bytes = b"\x00" * 12,
) -> Message:
    return Message(
        message_id=message_id or uuid.uuid4(),
        room_id=room_id,
        sender_id=sender_id,
        sender_display_name="Alice",
        ciphertext=ciphertext,
        iv=iv,
        created_at=datetime.now(timezone.utc),
    )


@dataclass
class FakeRoomRepo:
    _rooms: dict[str, Room] = field(default_factory=dict)

    async def create(self, name: str | None) -> Room:
        room = Room(id=str(uuid.uuid4()), name=name, created_at=datetime.now(timezone.utc))
        self._rooms[room.id] = room
        return room

    async def ensure(self, room_id: str) -> None:
        if room_id not in self._rooms:
            self._rooms[room_id] = Room(id=room_id, name=None, created_at=datetime.now(timezone.utc))

    async def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)


@dataclass
class FakeUserDirectory:
    _users: dict[str, User] = field(default_factory=dict)
    conflicting_ids: set[str] = field(default_factory=set)

    async def upsert(self, user_id: str, display_name: str) -> User:
        if user_id in self.conflicting_ids:
            raise IdentityConflictError(f"conflict on {user_id}")
        existing = self._users.get(user_id)
        created_at = existing.created_at if existing else datetime.now(timezone.utc)
        user = User(id=user_id, display_name=display_name, created_at=created_at)
        self._users[user_id] = user
        return user

    async def ensure(self, user_id: str) -> None:
        if user_id not in self._users:
            self._users[user_id] = User(id=user_id, display_name="Anon", created_at=datetime.now(timezone.utc))

    async def get(self, user_id: str) -> User | None:
        return self._users.get(user_id)


@dataclass
class FakeMessageReader:
    _messages: dict[UUID, Message] = field(default_factory=dict)

    async def list_recent(self, room_id: str, limit: int) -> list[Message]:
        in_room = [m for m in self._messages.values() if m.room_id == room_id]
        return in_room[-limit:]

    async def get(self, message_id: UUID) -> Message | None:
        return self._messages.get(message_id)


@dataclass
class FakeMessageWriter:
    _reader: FakeMessageReader
    fail_inserts: bool = False

    async def insert_if_absent(self, message: Message) -> tuple[Message, bool]:
        if self.fail_inserts:
            raise PersistenceError("store unavailable")
        existing = self._reader._messages.get(message.message_id)
        if existing is not None:
            return existing, False
        self._reader._messages[message.message_id] = message
        return message, True

    async def set_delivered_if_unset(self, message_id: UUID) -> Message | None:
        msg = self._reader._messages.get(message_id)
        if msg is None:
            return None
        msg = replace(
            msg,
            delivered_at=msg.delivered_at or datetime.now(timezone.utc),
            status=MessageStatus.READ if msg.status is MessageStatus.READ else MessageStatus.DELIVERED,
        )
        self._reader._messages[message_id] = msg
        return msg

    async def set_read_if_unset(self, message_id: UUID) -> Message | None:
        msg = self._reader._messages.get(message_id)
        if msg is None:
            return None
        msg = replace(
            msg,
            read_at=msg.read_at or datetime.now(timezone.utc),
            status=MessageStatus.READ,
        )
        self._reader._messages[message_id] = msg
        return msg


@dataclass
class FakeUoW:
    """In-memory UoW for unit tests."""
    rooms: FakeRoomRepo = field(default_factory=FakeRoomRepo)
    users: FakeUserDirectory = field(default_factory=FakeUserDirectory)
    messages: FakeMessageReader = field(default_factory=FakeMessageReader)
    messages_w: FakeMessageWriter | None = None
    _committed: bool = False
    _rolled_back: bool = False

    def __post_init__(self) -> None:
        if self.messages_w is None:
            self.messages_w = FakeMessageWriter(self.messages)

    async def commit(self) -> None:
        self._committed = True

    async def rollback(self) -> None:
        self._rolled_back = True


@dataclass
class SentEvent:
    kind: str  # "direct" | "room" | "all"
    target: str | None
    event_type: str
    data: Any
    exclude: str | None = None
    # room members the event reached, captured at send time
    recipients: list[str] = field(default_factory=list)


@dataclass
class FakeHub:
    """Records every outbound event instead of delivering it."""
    events: list[SentEvent] = field(default_factory=list)
    rooms: dict[str, set[str]] = field(default_factory=dict)

    def join(self, connection_id: str, room_id: str) -> bool:
        members = self.rooms.setdefault(room_id, set())
        added = connection_id not in members
        members.add(connection_id)
        return added

    def leave(self, connection_id: str, room_id: str) -> None:
        self.rooms.get(room_id, set()).discard(connection_id)

    async def send_to_connection(self, connection_id: str, event_type: str, data: Any) -> None:
        self.events.append(SentEvent("direct", connection_id, str(event_type), data))

    async def broadcast_to_room(
        self, room_id: str, event_type: str, data: Any, *, exclude: str | None = None,
    ) -> None:
        recipients = sorted(self.rooms.get(room_id, set()) - {exclude})
        self.events.append(SentEvent("room", room_id, str(event_type), data, exclude, recipients))

    async def broadcast_all(self, event_type: str, data: Any) -> None:
        self.events.append(SentEvent("all", None, str(event_type), data))

    def of_type(self, event_type: str) -> list[SentEvent]:
        return [e for e in self.events if e.event_type == event_type]


class LoopbackRelay:
    """Wires client engines straight to the relay services over an in-memory hub.

    Payloads are pushed through JSON on the way in and out, so the engines
    see exactly what a WebSocket would carry.
    """

    def __init__(self, uow: FakeUoW | None = None) -> None:
        self.uow = uow or FakeUoW()
        self.engines: dict[str, Any] = {}
        self.rooms: dict[str, set[str]] = {}

    # RoomHub
    def join(self, connection_id: str, room_id: str) -> bool:
        members = self.rooms.setdefault(room_id, set())
        added = connection_id not in members
        members.add(connection_id)
        return added

    def leave(self, connection_id: str, room_id: str) -> None:
        self.rooms.get(room_id, set()).discard(connection_id)

    async def send_to_connection(self, connection_id: str, event_type: str, data: Any) -> None:
        engine = self.engines.get(connection_id)
        if engine is not None:
            await engine.handle(str(event_type), json.loads(json.dumps(data)))

    async def broadcast_to_room(
        self, room_id: str, event_type: str, data: Any, *, exclude: str | None = None,
    ) -> None:
        for cid in sorted(self.rooms.get(room_id, set())):
            if cid != exclude:
                await self.send_to_connection(cid, event_type, data)

    async def broadcast_all(self, event_type: str, data: Any) -> None:
        for cid in sorted(self.engines):
            await self.send_to_connection(cid, event_type, data)

    def connect(self, connection_id: str, engine: Any) -> LoopbackChannel:
        self.engines[connection_id] = engine
        channel = LoopbackChannel(self, connection_id)
        engine.attach(channel)
        return channel


@dataclass
class LoopbackChannel:
    relay: LoopbackRelay
    connection_id: str
    emitted: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    async def emit(self, event_type: str, data: dict[str, Any]) -> None:
        from room_relay.infrastructure.ws.protocol import AckRequest, JoinRequest, SendRequest
        from room_relay.services import relay_service

        data = json.loads(json.dumps(data))
        self.emitted.append((str(event_type), data))
        relay, uow = self.relay, self.relay.uow
        if event_type == "join":
            await relay_service.join_room(JoinRequest.model_validate(data), self.connection_id, uow, relay)
        elif event_type == "send":
            await relay_service.send_message(SendRequest.model_validate(data), self.connection_id, uow, relay)
        elif event_type == "ack-delivered":
            await relay_service.mark_delivered(AckRequest.model_validate(data), uow, relay)
        elif event_type == "ack-read":
            await relay_service.mark_read(AckRequest.model_validate(data), uow, relay)


@pytest.fixture
def uow() -> FakeUoW:
    return FakeUoW()


@pytest.fixture
def hub() -> FakeHub:
    return FakeHub()
