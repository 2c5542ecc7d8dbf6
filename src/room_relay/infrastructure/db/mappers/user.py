from __future__ import annotations

from room_relay.domain.entities.user import User
from room_relay.infrastructure.db.models.user import UserModel


def model_to_entity(model: UserModel, default_name: str) -> User:
    return User(
        id=model.id,
        display_name=model.name or default_name,
        created_at=model.created_at,
    )
