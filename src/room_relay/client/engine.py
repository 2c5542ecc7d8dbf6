"""Client side of the message lifecycle.

:class:`ClientEngine` owns the timeline and the room key, consumes server
events, and drives the delivered/read acknowledgment handshake. All state
changes go through the pure functions in :mod:`room_relay.client.timeline`
and are assigned back in a single statement, so interleaved handlers on
the event loop always work on the latest snapshot.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from room_relay.application.exceptions import (
    CodecError,
    DecryptionError,
    KeyDerivationError,
    ValidationError,
)
from room_relay.client import timeline as tl
from room_relay.client.identity import IdentityStore, StoredIdentity
from room_relay.domain.value_objects.enums import LocalStatus
from room_relay.infrastructure.crypto import envelope
from room_relay.infrastructure.transport.codec import to_wire
from room_relay.infrastructure.ws.protocol import (
    AckRequest,
    InboundEvent,
    JoinRequest,
    OutboundEvent,
    SendRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_PLACEHOLDER = "Encrypted message (unlock to view)"

TICKS = {
    LocalStatus.SENDING: "…",
    LocalStatus.SENT: "✓",
    LocalStatus.DELIVERED: "✓✓",
    LocalStatus.READ: "✓✓ (read)",
    LocalStatus.FAILED: "!",
}


class SessionClosedError(RuntimeError):
    """No open channel to the relay."""


class Channel(Protocol):
    async def emit(self, event_type: str, data: dict[str, Any]) -> None: ...


@dataclass(frozen=True, slots=True)
class MessageView:
    message_id: str
    display_name: str
    text: str
    mine: bool
    tick: str | None
    created_at: datetime | None


class ClientEngine:
    def __init__(
        self,
        room_id: str,
        *,
        user_id: str | None = None,
        display_name: str = "Anon",
        identity_store: IdentityStore | None = None,
        placeholder: str = DEFAULT_PLACEHOLDER,
    ) -> None:
        self.room_id = room_id
        self.user_id = user_id
        self.display_name = display_name
        self.fingerprint: str | None = None
        self.members: dict[str, str] = {}
        self._identity_store = identity_store
        self._placeholder = placeholder
        self._key: envelope.RoomKey | None = None
        self._channel: Channel | None = None
        self._timeline = tl.Timeline()

    @property
    def timeline(self) -> tl.Timeline:
        return self._timeline

    @property
    def unlocked(self) -> bool:
        return self._key is not None

    # -- channel lifecycle ---------------------------------------------

    def attach(self, channel: Channel) -> None:
        self._channel = channel

    def detach(self) -> None:
        self._channel = None

    def join_payload(self) -> dict[str, Any]:
        return JoinRequest(
            room_id=self.room_id, user_id=self.user_id, display_name=self.display_name,
        ).to_wire()

    async def _emit(self, event_type: str, data: dict[str, Any], *, required: bool = False) -> None:
        """Send through the attached channel.

        Receipts are best effort and dropped while detached; a ``required``
        emit raises :class:`SessionClosedError` instead.
        """
        if self._channel is None:
            if required:
                raise SessionClosedError(f"no channel for {event_type}")
            logger.debug("No channel attached, dropping %s", event_type)
            return
        await self._channel.emit(event_type, data)

    # -- key lifecycle -------------------------------------------------

    async def unlock(self, passphrase: str) -> str:
        """Derive the room key, then decrypt everything still encrypted.

        Raises :class:`KeyDerivationError` if the key cannot be derived; the
        engine stays locked and the caller may prompt again.
        """
        try:
            key = await envelope.derive_key_async(passphrase, self.room_id)
        except KeyDerivationError:
            logger.warning("Key derivation failed for room %s", self.room_id)
            raise
        self._key = key
        self.fingerprint = envelope.fingerprint(passphrase, self.room_id)
        logger.info("Unlocked room %s (fingerprint %s)", self.room_id, self.fingerprint)
        await self._sweep()
        return self.fingerprint

    def _try_decrypt(self, message: tl.LocalMessage) -> str | None:
        if self._key is None or not message.iv or not message.ciphertext:
            return None
        try:
            return envelope.decrypt(self._key, message.iv, message.ciphertext)
        except DecryptionError as exc:
            logger.warning("Cannot decrypt %s: %s", message.message_id, exc.detail)
            return None

    async def _sweep(self) -> None:
        for message in tl.undecrypted(self._timeline):
            plaintext = self._try_decrypt(message)
            if plaintext is None:
                continue
            self._timeline = tl.set_plaintext(self._timeline, message.message_id, plaintext)
            if not self._is_mine(message) and message.status is not LocalStatus.READ:
                await self._ack(InboundEvent.ACK_READ, message.message_id)

    # -- sending -------------------------------------------------------

    async def send(self, text: str) -> str:
        """Encrypt ``text``, show it optimistically, and emit it. Returns the message id."""
        if not text.strip():
            raise ValidationError("message is empty")
        if self._key is None:
            raise ValidationError("unlock the room with its passphrase before sending")

        message_id = str(uuid.uuid4())
        created_at = datetime.now(timezone.utc)
        iv, ciphertext = envelope.encrypt(self._key, text)
        self._timeline = tl.add_optimistic(
            self._timeline,
            tl.LocalMessage(
                message_id=message_id,
                room_id=self.room_id,
                sender_id=self.user_id,
                display_name=self.display_name,
                ciphertext=ciphertext,
                iv=iv,
                status=LocalStatus.SENDING,
                created_at=created_at,
                plaintext=text,
            ),
        )
        try:
            await self._emit(
                InboundEvent.SEND,
                SendRequest(
                    message_id=uuid.UUID(message_id),
                    room_id=self.room_id,
                    sender_id=self.user_id,
                    display_name=self.display_name,
                    iv=to_wire(iv),
                    ciphertext=to_wire(ciphertext),
                    created_at=created_at,
                ).to_wire(),
                required=True,
            )
        except Exception:
            logger.exception("emit send failed for %s", message_id)
            self._timeline = tl.mark_failed(self._timeline, message_id)
        return message_id

    # -- inbound events ------------------------------------------------

    async def handle(self, event_type: str, data: Any) -> None:
        if event_type == OutboundEvent.MESSAGE:
            await self.on_message(data)
        elif event_type == OutboundEvent.MESSAGE_ACK:
            await self.on_message_ack(data)
        elif event_type == OutboundEvent.STATUS_UPDATE:
            self.on_status_update(data)
        elif event_type == OutboundEvent.HISTORY:
            await self.on_history(data)
        elif event_type == OutboundEvent.IDENTITY:
            self.on_identity(data)
        elif event_type == OutboundEvent.PRESENCE:
            self.on_presence(data)
        elif event_type == OutboundEvent.ERROR:
            logger.warning("Server error: %s", data)
        elif event_type != OutboundEvent.PONG:
            logger.debug("Ignoring event %s", event_type)

    def _parse(self, payload: Any) -> tl.LocalMessage | None:
        if not isinstance(payload, dict):
            logger.warning("Dropping non-object record: %r", payload)
            return None
        try:
            return tl.record_from_payload(payload)
        except CodecError as exc:
            logger.warning("Dropping record: %s", exc.detail)
            return None

    def _is_mine(self, message: tl.LocalMessage) -> bool:
        return self.user_id is not None and message.sender_id == self.user_id

    def _decrypt_in_place(self, message_id: str) -> bool:
        message = self._timeline.get(message_id)
        if message is None or message.plaintext is not None:
            return False
        plaintext = self._try_decrypt(message)
        if plaintext is None:
            return False
        self._timeline = tl.set_plaintext(self._timeline, message_id, plaintext)
        return True

    async def _ack(self, event_type: str, message_id: str) -> None:
        await self._emit(
            event_type,
            AckRequest(
                message_id=uuid.UUID(message_id), user_id=self.user_id, room_id=self.room_id,
            ).to_wire(),
        )

    async def on_message(self, payload: Any) -> None:
        """A record from another connection: merge, ack delivered, decrypt, ack read."""
        record = self._parse(payload)
        if record is None:
            return
        self._timeline = tl.merge_record(self._timeline, record)
        if self._is_mine(record):
            # another tab of ours; no receipts for our own messages
            self._decrypt_in_place(record.message_id)
            return
        await self._ack(InboundEvent.ACK_DELIVERED, record.message_id)
        if self._decrypt_in_place(record.message_id):
            await self._ack(InboundEvent.ACK_READ, record.message_id)

    async def on_message_ack(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            return
        if not payload.get("ok"):
            failure = payload.get("failure") or {}
            message_id = failure.get("messageId")
            if message_id:
                logger.warning("Send of %s failed: %s", message_id, failure.get("reason"))
                self._timeline = tl.mark_failed(self._timeline, tl.canonical_id(message_id))
            return
        record = self._parse(payload.get("message"))
        if record is None:
            return
        self._timeline = tl.merge_record(self._timeline, record)
        self._decrypt_in_place(record.message_id)

    def on_status_update(self, payload: Any) -> None:
        if not isinstance(payload, dict) or not payload.get("messageId"):
            return
        try:
            status = LocalStatus(payload.get("status"))
        except ValueError:
            logger.debug("Unknown status in update: %r", payload.get("status"))
            return
        self._timeline = tl.apply_status(
            self._timeline,
            tl.canonical_id(payload["messageId"]),
            status,
            tl.parse_time(payload.get("timestamp")),
        )

    async def on_history(self, payload: Any) -> None:
        if not isinstance(payload, list):
            return
        records = [r for r in (self._parse(p) for p in payload) if r is not None]
        self._timeline = tl.merge_history(self._timeline, records)
        for record in records:
            decrypted = self._decrypt_in_place(record.message_id)
            if decrypted and not self._is_mine(record) and record.status is not LocalStatus.READ:
                await self._ack(InboundEvent.ACK_READ, record.message_id)

    def on_identity(self, payload: Any) -> None:
        if not isinstance(payload, dict) or not payload.get("userId"):
            return
        user_id = str(payload["userId"])
        if user_id != self.user_id:
            logger.info("Server assigned user id %s", user_id)
        self.user_id = user_id
        self.display_name = payload.get("displayName") or self.display_name
        if self._identity_store is not None:
            self._identity_store.save(
                StoredIdentity(user_id=self.user_id, display_name=self.display_name)
            )

    def on_presence(self, payload: Any) -> None:
        if isinstance(payload, dict) and payload.get("userId"):
            self.members[str(payload["userId"])] = payload.get("displayName") or "Anon"

    # -- rendering -----------------------------------------------------

    def view(self) -> list[MessageView]:
        rows = []
        for message in self._timeline:
            mine = self._is_mine(message)
            text = self._placeholder
            if self._key is not None and message.plaintext is not None:
                text = message.plaintext
            rows.append(
                MessageView(
                    message_id=message.message_id,
                    display_name=message.display_name,
                    text=text,
                    mine=mine,
                    tick=TICKS.get(message.status) if mine else None,
                    created_at=message.created_at,
                )
            )
        return rows
