from __future__ import annotations

from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from room_relay.domain.entities.message import Message
from room_relay.domain.value_objects.enums import MessageStatus
from room_relay.infrastructure.db.mappers import message as mapper
from room_relay.infrastructure.db.models.message import MessageModel
from room_relay.infrastructure.db.models.user import UserModel
from room_relay.infrastructure.db.repositories._errors import translate_errors


class MessageReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_recent(self, room_id: str, limit: int) -> list[Message]:
        stmt = (
            select(MessageModel, UserModel.name)
            .outerjoin(UserModel, UserModel.id == MessageModel.sender_id)
            .where(MessageModel.room_id == room_id)
            .order_by(MessageModel.created_at.desc(), MessageModel.message_id.desc())
            .limit(limit)
        )
        with translate_errors():
            result = await self._session.execute(stmt)
            rows = result.all()
        # newest-first window, replayed oldest-first
        return [mapper.model_to_entity(m, name) for m, name in reversed(rows)]

    async def get(self, message_id: UUID) -> Message | None:
        stmt = select(MessageModel).where(MessageModel.message_id == message_id)
        with translate_errors():
            result = await self._session.execute(stmt)
            model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None


class MessageWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._reader = MessageReaderRepo(session)

    async def insert_if_absent(self, message: Message) -> tuple[Message, bool]:
        """Insert message idempotently. Returns (message, created_flag)."""
        stmt = (
            pg_insert(MessageModel)
            .values(**mapper.entity_to_values(message))
            .on_conflict_do_nothing(index_elements=[MessageModel.message_id])
            .returning(MessageModel)
        )
        with translate_errors():
            result = await self._session.execute(stmt)
            row = result.scalar_one_or_none()

        if row is not None:
            return mapper.model_to_entity(row), True

        # conflict: the row is already stored
        existing = await self._reader.get(message.message_id)
        assert existing is not None
        return existing, False

    async def set_delivered_if_unset(self, message_id: UUID) -> Message | None:
        stmt = (
            update(MessageModel)
            .where(MessageModel.message_id == message_id)
            .values(
                delivered_at=func.coalesce(MessageModel.delivered_at, func.now()),
                status=case(
                    (MessageModel.status == MessageStatus.READ.value, MessageStatus.READ.value),
                    else_=MessageStatus.DELIVERED.value,
                ),
            )
            .returning(MessageModel)
        )
        return await self._update_one(stmt)

    async def set_read_if_unset(self, message_id: UUID) -> Message | None:
        stmt = (
            update(MessageModel)
            .where(MessageModel.message_id == message_id)
            .values(
                read_at=func.coalesce(MessageModel.read_at, func.now()),
                status=MessageStatus.READ.value,
            )
            .returning(MessageModel)
        )
        return await self._update_one(stmt)

    async def _update_one(self, stmt) -> Message | None:
        with translate_errors():
            result = await self._session.execute(stmt)
            model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None
