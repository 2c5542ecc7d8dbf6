from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from room_relay.domain.value_objects.enums import MessageStatus


@dataclass(frozen=True, slots=True)
class MessageStatusChanged:
    message_id: UUID
    status: MessageStatus
    timestamp: datetime
    room_id: str | None = None
