from __future__ import annotations

from typing import Protocol

from room_relay.domain.entities.user import User


class UserDirectory(Protocol):
    async def upsert(self, user_id: str, display_name: str) -> User:
        """Create the user or overwrite its display name (last write wins)."""
        ...

    async def ensure(self, user_id: str) -> None:
        """Insert a bare id row if missing; never touches an existing row."""
        ...

    async def get(self, user_id: str) -> User | None: ...
