from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from room_relay.domain.value_objects.enums import MessageStatus


@dataclass(frozen=True, slots=True)
class Message:
    message_id: UUID
    room_id: str
    sender_id: str
    sender_display_name: str
    ciphertext: bytes
    iv: bytes
    created_at: datetime
    status: MessageStatus = MessageStatus.SENT
    delivered_at: datetime | None = None
    read_at: datetime | None = None

    @property
    def effective_status(self) -> MessageStatus:
        """Status with ``read`` implying ``delivered`` regardless of column order."""
        if self.read_at is not None:
            return MessageStatus.READ
        if self.delivered_at is not None:
            return self.status.advance(MessageStatus.DELIVERED)
        return self.status
