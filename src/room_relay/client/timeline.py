"""Pure reducer over the client's ordered message list.

The timeline is an immutable mapping from ``message_id`` to
:class:`LocalMessage`, in display order. Every function here takes a
timeline and returns a new one; nothing renders and nothing awaits, so a
caller that assigns the result in one step never loses an update.

Incoming canonical records are matched in three tiers:

1. same ``message_id``: merge into that entry;
2. an unconfirmed optimistic entry with the same
   ``(sender_id, ciphertext, iv)``: re-key it to the canonical id and merge;
3. otherwise append.

Merges never drop a cached ``plaintext`` and never move a status backwards.
"""
from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Any
from uuid import UUID

from pydantic import TypeAdapter

from room_relay.application.exceptions import CodecError
from room_relay.domain.value_objects.enums import LocalStatus
from room_relay.infrastructure.transport.codec import normalize

_datetime = TypeAdapter(datetime)


@dataclass(frozen=True, slots=True)
class LocalMessage:
    message_id: str
    room_id: str | None
    sender_id: str | None
    display_name: str
    ciphertext: bytes
    iv: bytes
    status: LocalStatus
    created_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    plaintext: str | None = None
    confirmed: bool = False

    @property
    def content_key(self) -> tuple[str | None, bytes, bytes]:
        return self.sender_id, self.ciphertext, self.iv


@dataclass(frozen=True, slots=True)
class Timeline:
    entries: Mapping[str, LocalMessage] = field(default_factory=lambda: MappingProxyType({}))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[LocalMessage]:
        return iter(self.entries.values())

    def __contains__(self, message_id: object) -> bool:
        return message_id in self.entries

    def get(self, message_id: str) -> LocalMessage | None:
        return self.entries.get(message_id)


def _with(entries: dict[str, LocalMessage]) -> Timeline:
    return Timeline(MappingProxyType(entries))


def canonical_id(value: str | UUID) -> str:
    """UUIDs compare in their lower-case hyphenated form; other ids verbatim."""
    if isinstance(value, UUID):
        return str(value)
    try:
        return str(UUID(value))
    except ValueError:
        return value


def _field(payload: Mapping[str, Any], camel: str, snake: str) -> Any:
    value = payload.get(camel)
    return value if value is not None else payload.get(snake)


def parse_time(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return _datetime.validate_python(value)


def record_from_payload(payload: Mapping[str, Any], *, default_name: str = "Anon") -> LocalMessage:
    """Build a confirmed entry from a canonical record as it came off the wire.

    Raises :class:`CodecError` when ``iv`` or ``ciphertext`` is missing or in
    an unknown shape.
    """
    raw_id = _field(payload, "messageId", "message_id")
    if not raw_id:
        raise CodecError("canonical record without messageId")
    iv = _field(payload, "iv", "iv")
    ciphertext = _field(payload, "ciphertext", "ciphertext")
    if iv is None or ciphertext is None:
        raise CodecError("canonical record without iv/ciphertext")

    status_raw = payload.get("status") or LocalStatus.SENT.value
    try:
        status = LocalStatus(status_raw)
    except ValueError:
        status = LocalStatus.SENT

    return LocalMessage(
        message_id=canonical_id(raw_id),
        room_id=_field(payload, "roomId", "room_id"),
        sender_id=_field(payload, "senderId", "sender_id"),
        display_name=_field(payload, "displayName", "username") or default_name,
        ciphertext=normalize(ciphertext),
        iv=normalize(iv),
        status=status,
        created_at=parse_time(_field(payload, "createdAt", "created_at")),
        delivered_at=parse_time(_field(payload, "deliveredAt", "delivered_at")),
        read_at=parse_time(_field(payload, "readAt", "read_at")),
        confirmed=True,
    )


def _forward(current: LocalStatus, incoming: LocalStatus) -> LocalStatus:
    if current in (LocalStatus.SENDING, LocalStatus.FAILED) and incoming.rank >= LocalStatus.SENT.rank:
        return incoming
    return incoming if incoming.rank > current.rank else current


def _merge(existing: LocalMessage, incoming: LocalMessage) -> LocalMessage:
    return replace(
        incoming,
        status=_forward(existing.status, incoming.status),
        room_id=incoming.room_id or existing.room_id,
        created_at=incoming.created_at or existing.created_at,
        delivered_at=existing.delivered_at or incoming.delivered_at,
        read_at=existing.read_at or incoming.read_at,
        plaintext=incoming.plaintext or existing.plaintext,
        confirmed=existing.confirmed or incoming.confirmed,
    )


def add_optimistic(timeline: Timeline, message: LocalMessage) -> Timeline:
    if message.message_id in timeline:
        return timeline
    entries = dict(timeline.entries)
    entries[message.message_id] = message
    return _with(entries)


def _find_optimistic(timeline: Timeline, incoming: LocalMessage) -> str | None:
    if not (incoming.sender_id and incoming.ciphertext and incoming.iv):
        return None
    for entry in timeline:
        if not entry.confirmed and entry.content_key == incoming.content_key:
            return entry.message_id
    return None


def merge_record(timeline: Timeline, incoming: LocalMessage) -> Timeline:
    existing = timeline.get(incoming.message_id)
    if existing is not None:
        entries = dict(timeline.entries)
        entries[incoming.message_id] = _merge(existing, incoming)
        return _with(entries)

    transient_id = _find_optimistic(timeline, incoming)
    if transient_id is not None:
        merged = _merge(timeline.entries[transient_id], incoming)
        # rebuild to keep the bubble where the optimistic echo was
        entries = {
            (merged.message_id if key == transient_id else key): (
                merged if key == transient_id else value
            )
            for key, value in timeline.entries.items()
        }
        return _with(entries)

    entries = dict(timeline.entries)
    entries[incoming.message_id] = incoming
    return _with(entries)


def merge_history(timeline: Timeline, records: Iterable[LocalMessage]) -> Timeline:
    for record in records:
        timeline = merge_record(timeline, record)
    return timeline


def apply_status(
    timeline: Timeline,
    message_id: str,
    status: LocalStatus,
    timestamp: datetime | None = None,
) -> Timeline:
    existing = timeline.get(message_id)
    if existing is None:
        return timeline
    new_status = _forward(existing.status, status)
    delivered_at = existing.delivered_at
    read_at = existing.read_at
    if status is LocalStatus.DELIVERED and delivered_at is None:
        delivered_at = timestamp
    if status is LocalStatus.READ and read_at is None:
        read_at = timestamp
    updated = replace(existing, status=new_status, delivered_at=delivered_at, read_at=read_at)
    if updated == existing:
        return timeline
    entries = dict(timeline.entries)
    entries[message_id] = updated
    return _with(entries)


def mark_failed(timeline: Timeline, message_id: str) -> Timeline:
    """Flag an optimistic entry whose send was rejected. Confirmed entries stay as they are."""
    existing = timeline.get(message_id)
    if existing is None or existing.confirmed:
        return timeline
    entries = dict(timeline.entries)
    entries[message_id] = replace(existing, status=LocalStatus.FAILED)
    return _with(entries)


def set_plaintext(timeline: Timeline, message_id: str, plaintext: str) -> Timeline:
    existing = timeline.get(message_id)
    if existing is None or existing.plaintext == plaintext:
        return timeline
    entries = dict(timeline.entries)
    entries[message_id] = replace(existing, plaintext=plaintext)
    return _with(entries)


def undecrypted(timeline: Timeline) -> list[LocalMessage]:
    return [m for m in timeline if m.plaintext is None and m.ciphertext and m.iv]
