"""Authoritative side of the message lifecycle.

Each handler persists first and multicasts second: nothing reaches the room
unless the store accepted it, and a store failure is reported only to the
connection that caused it.
"""
from __future__ import annotations

import logging
import uuid

from room_relay.application.exceptions import (
    CodecError,
    IdentityConflictError,
    PersistenceError,
)
from room_relay.application.ports.clock import Clock, SystemClock
from room_relay.application.ports.hub import RoomHub
from room_relay.application.uow import UnitOfWork
from room_relay.config import settings
from room_relay.domain.entities.message import Message
from room_relay.domain.events.message_status_changed import MessageStatusChanged
from room_relay.domain.events.user_joined import UserJoined
from room_relay.domain.value_objects.enums import MessageStatus
from room_relay.infrastructure.transport.codec import normalize
from room_relay.infrastructure.ws.protocol import (
    AckRequest,
    CanonicalMessage,
    ErrorPayload,
    Identity,
    JoinRequest,
    MessageAck,
    OutboundEvent,
    Presence,
    SendFailure,
    SendRequest,
    StatusUpdate,
)

logger = logging.getLogger(__name__)

_default_clock = SystemClock()


def _display_name(raw: str | None) -> str:
    name = (raw or "").strip()
    return name or settings.DEFAULT_DISPLAY_NAME


async def _resolve_identity(uow: UnitOfWork, user_id: str, display_name: str) -> str:
    """Upsert the user; on an id collision keep the id and move on."""
    try:
        user = await uow.users.upsert(user_id, display_name)
        return user.display_name
    except IdentityConflictError:
        logger.warning("User upsert conflicted for %s, falling back to id-only insert", user_id)
        await uow.users.ensure(user_id)
        return display_name


async def _broadcast(
    hub: RoomHub,
    room_id: str,
    event_type: str,
    data: object,
    *,
    exclude: str | None = None,
) -> None:
    """Room multicast after a commit; a failed fan-out is logged, not raised."""
    try:
        await hub.broadcast_to_room(room_id, event_type, data, exclude=exclude)
    except Exception:
        logger.exception("Broadcast of %s to room %s failed", event_type, room_id)


async def join_room(
    request: JoinRequest,
    connection_id: str,
    uow: UnitOfWork,
    hub: RoomHub,
) -> UserJoined | None:
    """Register the connection in the room and replay recent history to it.

    A missing ``user_id`` is minted here and reported back through the
    ``identity`` event; the client must keep it for later reconnects.
    """
    user_id = request.user_id or str(uuid.uuid4())
    display_name = _display_name(request.display_name)

    # member before the history read: a message committed after the read is
    # broadcast to this connection, one committed before it is in the history
    joined = hub.join(connection_id, request.room_id)
    try:
        await uow.rooms.ensure(request.room_id)
        display_name = await _resolve_identity(uow, user_id, display_name)
        history = await uow.messages.list_recent(request.room_id, settings.HISTORY_LIMIT)
        await uow.commit()
    except PersistenceError as exc:
        logger.exception("join failed for room %s", request.room_id)
        await uow.rollback()
        if joined:
            hub.leave(connection_id, request.room_id)
        await hub.send_to_connection(
            connection_id,
            OutboundEvent.ERROR,
            ErrorPayload(code="join_failed", detail=exc.detail).model_dump(),
        )
        return None

    logger.info("%s joined %s as %s", user_id, request.room_id, display_name)

    await hub.send_to_connection(
        connection_id,
        OutboundEvent.IDENTITY,
        Identity(user_id=user_id, display_name=display_name).to_wire(),
    )
    await _broadcast(
        hub,
        request.room_id,
        OutboundEvent.PRESENCE,
        Presence(user_id=user_id, display_name=display_name).to_wire(),
        exclude=connection_id,
    )
    await hub.send_to_connection(
        connection_id,
        OutboundEvent.HISTORY,
        [CanonicalMessage.from_entity(m).to_wire() for m in history],
    )
    return UserJoined(room_id=request.room_id, user_id=user_id, display_name=display_name)


async def _reject_send(hub: RoomHub, connection_id: str, request: SendRequest, reason: str) -> None:
    ack = MessageAck(ok=False, failure=SendFailure(message_id=request.message_id, reason=reason))
    await hub.send_to_connection(connection_id, OutboundEvent.MESSAGE_ACK, ack.to_wire())


async def send_message(
    request: SendRequest,
    connection_id: str,
    uow: UnitOfWork,
    hub: RoomHub,
    clock: Clock = _default_clock,
) -> Message | None:
    """Persist a message exactly once and fan it out.

    The room receives the canonical record minus the originating connection;
    the originator gets it back as a ``message-ack`` so it can settle its
    optimistic entry. A repeated ``message_id`` returns the stored row and
    is not re-broadcast.
    """
    try:
        iv = normalize(request.iv)
        ciphertext = normalize(request.ciphertext)
    except CodecError as exc:
        logger.warning("Rejecting %s: %s", request.message_id, exc.detail)
        await _reject_send(hub, connection_id, request, "invalid_encoding")
        return None

    sender_id = request.sender_id or str(uuid.uuid4())
    display_name = _display_name(request.display_name)

    try:
        await uow.rooms.ensure(request.room_id)
        display_name = await _resolve_identity(uow, sender_id, display_name)
        msg, created = await uow.messages_w.insert_if_absent(
            Message(
                message_id=request.message_id,
                room_id=request.room_id,
                sender_id=sender_id,
                sender_display_name=display_name,
                ciphertext=ciphertext,
                iv=iv,
                created_at=request.created_at or clock.now(),
            )
        )
        await uow.commit()
    except PersistenceError:
        logger.exception("send failed for message %s", request.message_id)
        await uow.rollback()
        await _reject_send(hub, connection_id, request, "persistence_error")
        return None

    record = CanonicalMessage.from_entity(msg).to_wire()
    if created:
        await _broadcast(hub, msg.room_id, OutboundEvent.MESSAGE, record, exclude=connection_id)
    else:
        logger.debug("Duplicate send of %s, acknowledging stored row", msg.message_id)

    await hub.send_to_connection(
        connection_id,
        OutboundEvent.MESSAGE_ACK,
        MessageAck(ok=True, message=CanonicalMessage.from_entity(msg)).to_wire(),
    )
    return msg


async def mark_delivered(
    request: AckRequest, uow: UnitOfWork, hub: RoomHub,
) -> MessageStatusChanged | None:
    return await _advance_status(request, MessageStatus.DELIVERED, uow, hub)


async def mark_read(
    request: AckRequest, uow: UnitOfWork, hub: RoomHub,
) -> MessageStatusChanged | None:
    return await _advance_status(request, MessageStatus.READ, uow, hub)


async def _advance_status(
    request: AckRequest,
    target: MessageStatus,
    uow: UnitOfWork,
    hub: RoomHub,
) -> MessageStatusChanged | None:
    try:
        if target is MessageStatus.READ:
            msg = await uow.messages_w.set_read_if_unset(request.message_id)
        else:
            msg = await uow.messages_w.set_delivered_if_unset(request.message_id)
        await uow.commit()
    except PersistenceError:
        logger.exception("%s ack failed for %s", target, request.message_id)
        await uow.rollback()
        return None

    if msg is None:
        logger.debug("%s ack for unknown message %s", target, request.message_id)
        return None

    # the broadcast carries the furthest status reached, so a late
    # delivered ack never announces a regression after a read
    status = msg.effective_status
    timestamp = msg.read_at if status is MessageStatus.READ else msg.delivered_at
    event = MessageStatusChanged(
        message_id=msg.message_id,
        status=status,
        timestamp=timestamp or _default_clock.now(),
        room_id=msg.room_id,
    )
    payload = StatusUpdate(
        message_id=event.message_id, status=event.status, timestamp=event.timestamp,
    ).to_wire()

    if request.room_id is None and settings.STATUS_GLOBAL_FALLBACK:
        logger.warning("Status ack for %s without roomId, broadcasting globally", msg.message_id)
        try:
            await hub.broadcast_all(OutboundEvent.STATUS_UPDATE, payload)
        except Exception:
            logger.exception("Global status broadcast failed for %s", msg.message_id)
        return event

    if request.room_id is not None and request.room_id != msg.room_id:
        logger.warning(
            "Status ack for %s named room %s but message belongs to %s",
            msg.message_id, request.room_id, msg.room_id,
        )
    await _broadcast(hub, msg.room_id, OutboundEvent.STATUS_UPDATE, payload)
    return event
