from __future__ import annotations

from typing import Any, Protocol


class RoomHub(Protocol):
    """Room-scoped multicast over whatever carries the client connections."""

    def join(self, connection_id: str, room_id: str) -> bool:
        """Add the connection to the room; False if it was already a member."""
        ...

    def leave(self, connection_id: str, room_id: str) -> None: ...

    async def send_to_connection(
        self, connection_id: str, event_type: str, data: Any,
    ) -> None: ...

    async def broadcast_to_room(
        self,
        room_id: str,
        event_type: str,
        data: Any,
        *,
        exclude: str | None = None,
    ) -> None: ...

    async def broadcast_all(self, event_type: str, data: Any) -> None: ...
