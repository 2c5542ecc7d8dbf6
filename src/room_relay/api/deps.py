"""FastAPI dependency injection helpers."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator

from fastapi import Depends

from room_relay.infrastructure.db.session import AsyncSessionLocal
from room_relay.infrastructure.db.uow import SqlAlchemyUoW


async def get_uow() -> AsyncIterator[SqlAlchemyUoW]:
    async with AsyncSessionLocal() as session:
        uow = SqlAlchemyUoW(session)
        try:
            yield uow
        finally:
            await session.close()


UoWDep = Annotated[SqlAlchemyUoW, Depends(get_uow)]


@asynccontextmanager
async def open_uow() -> AsyncIterator[SqlAlchemyUoW]:
    """Per-event unit of work for the WebSocket handlers."""
    async with AsyncSessionLocal() as session:
        yield SqlAlchemyUoW(session)
