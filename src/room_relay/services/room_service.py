from __future__ import annotations

from room_relay.application.exceptions import NotFoundError, ValidationError
from room_relay.application.uow import UnitOfWork
from room_relay.domain.entities.message import Message
from room_relay.domain.entities.room import Room


async def create_room(name: str | None, uow: UnitOfWork) -> Room:
    room = await uow.rooms.create((name or "").strip() or None)
    await uow.commit()
    return room


async def recent_messages(room_id: str, limit: int, uow: UnitOfWork) -> list[Message]:
    if limit < 1:
        raise ValidationError("limit must be positive")
    room = await uow.rooms.get(room_id)
    if room is None:
        raise NotFoundError(f"Room {room_id} not found")
    return await uow.messages.list_recent(room_id, limit)
