from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from room_relay.config import settings
from room_relay.domain.entities.user import User
from room_relay.infrastructure.db.mappers import user as mapper
from room_relay.infrastructure.db.models.user import UserModel
from room_relay.infrastructure.db.repositories._errors import translate_errors


class UserDirectoryRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, user_id: str, display_name: str) -> User:
        stmt = pg_insert(UserModel).values(id=user_id, name=display_name)
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserModel.id],
            set_={"name": stmt.excluded.name},
        ).returning(UserModel)
        # savepoint so a conflict leaves the outer transaction usable
        with translate_errors(identity=True):
            async with self._session.begin_nested():
                result = await self._session.execute(stmt)
                model = result.scalar_one()
        return mapper.model_to_entity(model, settings.DEFAULT_DISPLAY_NAME)

    async def ensure(self, user_id: str) -> None:
        stmt = (
            pg_insert(UserModel)
            .values(id=user_id)
            .on_conflict_do_nothing(index_elements=[UserModel.id])
        )
        with translate_errors():
            await self._session.execute(stmt)

    async def get(self, user_id: str) -> User | None:
        with translate_errors():
            result = await self._session.execute(
                select(UserModel).where(UserModel.id == user_id)
            )
            model = result.scalar_one_or_none()
        return mapper.model_to_entity(model, settings.DEFAULT_DISPLAY_NAME) if model else None
