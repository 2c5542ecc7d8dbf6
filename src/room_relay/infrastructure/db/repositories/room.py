from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from room_relay.domain.entities.room import Room
from room_relay.infrastructure.db.mappers import room as mapper
from room_relay.infrastructure.db.models.room import RoomModel
from room_relay.infrastructure.db.repositories._errors import translate_errors


class RoomRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, name: str | None) -> Room:
        stmt = (
            pg_insert(RoomModel)
            .values(id=str(uuid.uuid4()), room_name=name)
            .returning(RoomModel)
        )
        with translate_errors():
            result = await self._session.execute(stmt)
            model = result.scalar_one()
        return mapper.model_to_entity(model)

    async def ensure(self, room_id: str) -> None:
        stmt = (
            pg_insert(RoomModel)
            .values(id=room_id)
            .on_conflict_do_nothing(index_elements=[RoomModel.id])
        )
        with translate_errors():
            await self._session.execute(stmt)

    async def get(self, room_id: str) -> Room | None:
        with translate_errors():
            result = await self._session.execute(
                select(RoomModel).where(RoomModel.id == room_id)
            )
            model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None
