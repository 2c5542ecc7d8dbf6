"""Room multicast spread across server processes through Redis Pub/Sub.

Every process publishes room and global broadcasts to one channel and
delivers whatever it receives to its own local connections, including
what it published itself. Direct replies to a single connection never
leave the process that owns it.
"""
from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from room_relay.application.ports.bus import FanoutPublisher
from room_relay.infrastructure.ws.manager import ConnectionManager

logger = logging.getLogger(__name__)


class FanoutEnvelope(BaseModel):
    event_type: str
    scope: Literal["room", "all"]
    room_id: str | None = None
    # connection id that must not get its own broadcast back
    exclude: str | None = None
    payload: Any = None


class RedisFanoutHub:
    """Implements application.ports.hub.RoomHub."""

    def __init__(self, manager: ConnectionManager, publisher: FanoutPublisher) -> None:
        self._manager = manager
        self._publisher = publisher

    def join(self, connection_id: str, room_id: str) -> bool:
        return self._manager.join(connection_id, room_id)

    def leave(self, connection_id: str, room_id: str) -> None:
        self._manager.leave(connection_id, room_id)

    async def send_to_connection(self, connection_id: str, event_type: str, data: Any) -> None:
        await self._manager.send_to_connection(connection_id, event_type, data)

    async def broadcast_to_room(
        self,
        room_id: str,
        event_type: str,
        data: Any,
        *,
        exclude: str | None = None,
    ) -> None:
        envelope = FanoutEnvelope(
            event_type=event_type, scope="room", room_id=room_id, exclude=exclude, payload=data,
        )
        await self._publisher.publish(envelope.model_dump_json())

    async def broadcast_all(self, event_type: str, data: Any) -> None:
        envelope = FanoutEnvelope(event_type=event_type, scope="all", payload=data)
        await self._publisher.publish(envelope.model_dump_json())


async def deliver_fanout(manager: ConnectionManager, raw: str) -> None:
    """Dispatch one fan-out envelope to local WS connections."""
    try:
        envelope = FanoutEnvelope.model_validate_json(raw)
    except PydanticValidationError:
        logger.warning("Dropping malformed fan-out envelope")
        return
    if envelope.scope == "all":
        await manager.broadcast_all(envelope.event_type, envelope.payload)
        return
    if not envelope.room_id:
        logger.warning("Dropping room fan-out of %s without room_id", envelope.event_type)
        return
    await manager.broadcast_to_room(
        envelope.room_id, envelope.event_type, envelope.payload, exclude=envelope.exclude,
    )
