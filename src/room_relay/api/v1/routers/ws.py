from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncContextManager, Callable

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from room_relay.application.ports.hub import RoomHub
from room_relay.application.uow import UnitOfWork
from room_relay.config import settings
from room_relay.infrastructure.ws.manager import ConnectionManager
from room_relay.infrastructure.ws.protocol import (
    AckRequest,
    ErrorPayload,
    InboundEvent,
    JoinRequest,
    OutboundEvent,
    SendRequest,
    WsInbound,
    WsOutbound,
)
from room_relay.services import relay_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

UoWFactory = Callable[[], AsyncContextManager[UnitOfWork]]


@router.websocket("/ws/relay")
async def ws_relay(websocket: WebSocket) -> None:
    manager: ConnectionManager = websocket.app.state.manager
    connection_id = await manager.connect(websocket)

    heartbeat_task = asyncio.create_task(
        _heartbeat(websocket), name=f"ws-heartbeat-{connection_id}",
    )
    try:
        await _read_loop(websocket, connection_id)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WS error for %s", connection_id)
    finally:
        heartbeat_task.cancel()
        manager.disconnect(connection_id)


async def _heartbeat(ws: WebSocket) -> None:
    interval = settings.WS_HEARTBEAT_SECONDS
    try:
        while True:
            await asyncio.sleep(interval)
            await ws.send_text(WsOutbound(type=OutboundEvent.PONG, data={}).model_dump_json())
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.debug("Heartbeat stopped", exc_info=True)


async def _send_error(ws: WebSocket, code: str, **extra: Any) -> None:
    await ws.send_text(
        WsOutbound(
            type=OutboundEvent.ERROR,
            data=ErrorPayload(code=code, **extra).model_dump(exclude_none=True),
        ).model_dump_json()
    )


async def _read_loop(ws: WebSocket, connection_id: str) -> None:
    hub: RoomHub = ws.app.state.hub
    uow_factory: UoWFactory = ws.app.state.uow_factory
    while True:
        raw = await ws.receive_text()
        try:
            msg = WsInbound.model_validate_json(raw)
        except PydanticValidationError:
            await _send_error(ws, "invalid_payload")
            continue

        if msg.type == InboundEvent.PING:
            await ws.send_text(WsOutbound(type=OutboundEvent.PONG, data={}).model_dump_json())
            continue

        handler = _HANDLERS.get(msg.type)
        if handler is None:
            await _send_error(ws, "unknown_type", detail=msg.type)
            continue

        model, run = handler
        try:
            request = model.model_validate(msg.data)
        except PydanticValidationError as exc:
            await _send_error(ws, "invalid_data", detail=str(exc))
            continue

        try:
            async with uow_factory() as uow:
                await run(request, connection_id, uow, hub)
        except WebSocketDisconnect:
            raise
        except Exception:
            logger.exception("Handler for %s failed on %s", msg.type, connection_id)
            await _send_error(ws, "internal_error", detail=msg.type)


async def _on_join(request: JoinRequest, connection_id: str, uow: UnitOfWork, hub: RoomHub) -> None:
    await relay_service.join_room(request, connection_id, uow, hub)


async def _on_send(request: SendRequest, connection_id: str, uow: UnitOfWork, hub: RoomHub) -> None:
    await relay_service.send_message(request, connection_id, uow, hub)


async def _on_delivered(request: AckRequest, _connection_id: str, uow: UnitOfWork, hub: RoomHub) -> None:
    await relay_service.mark_delivered(request, uow, hub)


async def _on_read(request: AckRequest, _connection_id: str, uow: UnitOfWork, hub: RoomHub) -> None:
    await relay_service.mark_read(request, uow, hub)


_HANDLERS = {
    InboundEvent.JOIN.value: (JoinRequest, _on_join),
    InboundEvent.SEND.value: (SendRequest, _on_send),
    InboundEvent.ACK_DELIVERED.value: (AckRequest, _on_delivered),
    InboundEvent.ACK_READ.value: (AckRequest, _on_read),
}
