from __future__ import annotations

from room_relay.domain.entities.room import Room
from room_relay.infrastructure.db.models.room import RoomModel


def model_to_entity(model: RoomModel) -> Room:
    return Room(
        id=model.id,
        name=model.room_name,
        created_at=model.created_at,
    )
