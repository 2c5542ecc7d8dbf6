from __future__ import annotations

from fastapi import APIRouter, Query

from room_relay.api.deps import UoWDep
from room_relay.api.v1.schemas.room import CreateRoomRequest, CreateRoomResponse
from room_relay.config import settings
from room_relay.infrastructure.ws.protocol import CanonicalMessage
from room_relay.services import room_service

router = APIRouter(prefix="/api/v1/rooms", tags=["rooms"])


@router.post("", response_model=CreateRoomResponse, response_model_by_alias=True, status_code=201)
async def create_room(body: CreateRoomRequest, uow: UoWDep) -> CreateRoomResponse:
    room = await room_service.create_room(body.room_name, uow)
    return CreateRoomResponse(room_id=room.id, room_name=room.name)


@router.get("/{room_id}/messages")
async def list_messages(
    room_id: str,
    uow: UoWDep,
    limit: int = Query(settings.HISTORY_LIMIT, ge=1, le=500),
) -> list[dict]:
    messages = await room_service.recent_messages(room_id, limit, uow)
    return [CanonicalMessage.from_entity(m).to_wire() for m in messages]
