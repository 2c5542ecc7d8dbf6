from __future__ import annotations

from typing import Protocol

from room_relay.domain.entities.room import Room


class RoomRepository(Protocol):
    async def create(self, name: str | None) -> Room: ...

    async def ensure(self, room_id: str) -> None: ...

    async def get(self, room_id: str) -> Room | None: ...
