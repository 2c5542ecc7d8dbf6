from __future__ import annotations

from typing import Protocol

from room_relay.application.repositories.message import MessageReader, MessageWriter
from room_relay.application.repositories.room import RoomRepository
from room_relay.application.repositories.user import UserDirectory


class UnitOfWork(Protocol):
    rooms: RoomRepository
    users: UserDirectory
    messages: MessageReader
    messages_w: MessageWriter

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...
