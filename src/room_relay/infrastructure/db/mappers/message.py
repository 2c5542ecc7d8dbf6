from __future__ import annotations

from room_relay.domain.entities.message import Message
from room_relay.domain.value_objects.enums import MessageStatus
from room_relay.infrastructure.db.models.message import MessageModel


def model_to_entity(model: MessageModel, display_name: str | None = None) -> Message:
    """``display_name`` from the user directory overrides the denormalized name."""
    return Message(
        message_id=model.message_id,
        room_id=model.room_id,
        sender_id=model.sender_id,
        sender_display_name=display_name or model.sender_display_name,
        ciphertext=bytes(model.ciphertext),
        iv=bytes(model.iv),
        status=MessageStatus(model.status),
        created_at=model.created_at,
        delivered_at=model.delivered_at,
        read_at=model.read_at,
    )


def entity_to_values(entity: Message) -> dict:
    return {
        "message_id": entity.message_id,
        "room_id": entity.room_id,
        "sender_id": entity.sender_id,
        "sender_display_name": entity.sender_display_name,
        "ciphertext": entity.ciphertext,
        "iv": entity.iv,
        "status": entity.status.value,
        "created_at": entity.created_at,
    }
