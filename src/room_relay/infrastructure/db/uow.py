from __future__ import annotations

from types import TracebackType
from typing import Self

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from room_relay.application.exceptions import PersistenceError
from room_relay.infrastructure.db.repositories.message import (
    MessageReaderRepo,
    MessageWriterRepo,
)
from room_relay.infrastructure.db.repositories.room import RoomRepo
from room_relay.infrastructure.db.repositories.user import UserDirectoryRepo


class SqlAlchemyUoW:
    """Concrete Unit-of-Work backed by a single AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.rooms = RoomRepo(session)
        self.users = UserDirectoryRepo(session)
        self.messages = MessageReaderRepo(session)
        self.messages_w = MessageWriterRepo(session)

    async def commit(self) -> None:
        try:
            await self._session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc

    async def rollback(self) -> None:
        await self._session.rollback()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            await self.rollback()
