"""WebSocket frame envelope and event payload models.

Payload field names are camelCase on the wire; ``iv`` and ``ciphertext``
are always base64 text in anything the server emits.
"""
from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from room_relay.domain.entities.message import Message
from room_relay.domain.value_objects.enums import MessageStatus
from room_relay.infrastructure.transport.codec import to_wire


class InboundEvent(StrEnum):
    JOIN = "join"
    SEND = "send"
    ACK_DELIVERED = "ack-delivered"
    ACK_READ = "ack-read"
    PING = "ping"


class OutboundEvent(StrEnum):
    IDENTITY = "identity"
    PRESENCE = "presence"
    HISTORY = "history"
    MESSAGE = "message"
    MESSAGE_ACK = "message-ack"
    STATUS_UPDATE = "status-update"
    ERROR = "error"
    PONG = "pong"


class WsInbound(BaseModel):
    """Client → Server."""

    type: str
    data: dict[str, Any] = {}


class WsOutbound(BaseModel):
    """Server → Client."""

    type: str
    data: Any = {}


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class JoinRequest(_WireModel):
    room_id: str = Field(min_length=1)
    user_id: str | None = None
    display_name: str | None = Field(
        default=None, validation_alias=AliasChoices("displayName", "username", "display_name"),
    )


class SendRequest(_WireModel):
    message_id: UUID
    room_id: str = Field(min_length=1)
    sender_id: str | None = None
    display_name: str | None = Field(
        default=None, validation_alias=AliasChoices("displayName", "username", "display_name"),
    )
    iv: Any
    ciphertext: Any
    created_at: datetime | None = None


class AckRequest(_WireModel):
    message_id: UUID
    user_id: str | None = None
    room_id: str | None = None


class Identity(_WireModel):
    user_id: str
    display_name: str


class Presence(_WireModel):
    user_id: str
    display_name: str


class CanonicalMessage(_WireModel):
    message_id: UUID
    room_id: str
    sender_id: str
    display_name: str
    ciphertext: str
    iv: str
    status: MessageStatus
    created_at: datetime
    delivered_at: datetime | None = None
    read_at: datetime | None = None

    @classmethod
    def from_entity(cls, msg: Message) -> CanonicalMessage:
        return cls(
            message_id=msg.message_id,
            room_id=msg.room_id,
            sender_id=msg.sender_id,
            display_name=msg.sender_display_name,
            ciphertext=to_wire(msg.ciphertext),
            iv=to_wire(msg.iv),
            status=msg.effective_status,
            created_at=msg.created_at,
            delivered_at=msg.delivered_at,
            read_at=msg.read_at,
        )


class SendFailure(_WireModel):
    message_id: UUID
    reason: str


class MessageAck(_WireModel):
    """Reply to the sender: either the canonical record or a failure."""

    ok: bool
    message: CanonicalMessage | None = None
    failure: SendFailure | None = None


class StatusUpdate(_WireModel):
    message_id: UUID
    status: MessageStatus
    timestamp: datetime


class ErrorPayload(BaseModel):
    code: str
    detail: str | None = None
