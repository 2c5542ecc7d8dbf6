"""In-process WebSocket connection manager."""
from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import WebSocket

from room_relay.infrastructure.ws.protocol import WsOutbound

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks local WebSocket connections and the rooms each one has joined."""

    def __init__(self) -> None:
        self._connections: dict[str, WebSocket] = {}
        self._rooms: dict[str, set[str]] = {}

    async def connect(self, ws: WebSocket) -> str:
        await ws.accept()
        connection_id = uuid.uuid4().hex
        self._connections[connection_id] = ws
        logger.debug("WS connected: %s (total=%d)", connection_id, len(self._connections))
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        self._connections.pop(connection_id, None)
        for room_id in list(self._rooms):
            self.leave(connection_id, room_id)
        logger.debug("WS disconnected: %s", connection_id)

    def join(self, connection_id: str, room_id: str) -> bool:
        members = self._rooms.setdefault(room_id, set())
        if connection_id in members:
            return False
        members.add(connection_id)
        return True

    def leave(self, connection_id: str, room_id: str) -> None:
        members = self._rooms.get(room_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room_id]

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def members(self, room_id: str) -> set[str]:
        return set(self._rooms.get(room_id, set()))

    async def send_to_connection(self, connection_id: str, event_type: str, data: Any) -> None:
        ws = self._connections.get(connection_id)
        if ws is None:
            return
        raw = WsOutbound(type=event_type, data=data).model_dump_json()
        try:
            await ws.send_text(raw)
        except Exception:
            logger.debug("Dropping dead connection %s", connection_id, exc_info=True)
            self.disconnect(connection_id)

    async def broadcast_to_room(
        self,
        room_id: str,
        event_type: str,
        data: Any,
        *,
        exclude: str | None = None,
    ) -> None:
        """Send a WS message to every local member of a room."""
        targets = [cid for cid in self.members(room_id) if cid != exclude]
        await self._send_many(targets, event_type, data)

    async def broadcast_all(self, event_type: str, data: Any) -> None:
        await self._send_many(list(self._connections), event_type, data)

    async def _send_many(self, connection_ids: list[str], event_type: str, data: Any) -> None:
        raw = WsOutbound(type=event_type, data=data).model_dump_json()
        dead: list[str] = []
        for cid in connection_ids:
            ws = self._connections.get(cid)
            if ws is None:
                continue
            try:
                await ws.send_text(raw)
            except Exception:
                dead.append(cid)
        for cid in dead:
            self.disconnect(cid)
