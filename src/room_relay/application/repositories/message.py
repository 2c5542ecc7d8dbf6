from __future__ import annotations

from typing import Protocol
from uuid import UUID

from room_relay.domain.entities.message import Message


class MessageReader(Protocol):
    async def list_recent(self, room_id: str, limit: int) -> list[Message]:
        """Latest ``limit`` messages of a room, oldest first."""
        ...

    async def get(self, message_id: UUID) -> Message | None: ...


class MessageWriter(Protocol):
    async def insert_if_absent(self, message: Message) -> tuple[Message, bool]:
        """Insert message. Return (message, created). On a duplicate message_id → return existing."""
        ...

    async def set_delivered_if_unset(self, message_id: UUID) -> Message | None: ...

    async def set_read_if_unset(self, message_id: UUID) -> Message | None: ...
