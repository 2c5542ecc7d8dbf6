"""Import all models so Alembic can discover them via Base.metadata."""
from room_relay.infrastructure.db.models.message import MessageModel
from room_relay.infrastructure.db.models.room import RoomModel
from room_relay.infrastructure.db.models.user import UserModel

__all__ = [
    "MessageModel",
    "RoomModel",
    "UserModel",
]
