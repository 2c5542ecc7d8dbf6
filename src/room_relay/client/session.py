"""WebSocket session owning one client connection.

The session is the only holder of the connection: ``open`` connects,
re-joins the room and starts the receive task; ``close`` tears all of it
down and detaches the engine so late handlers cannot emit into a dead
socket. Reconnecting means opening a new session; the server answers the
join with a fresh history snapshot.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from room_relay.client.engine import ClientEngine, SessionClosedError
from room_relay.infrastructure.ws.protocol import InboundEvent, WsInbound, WsOutbound

logger = logging.getLogger(__name__)


class RelaySession:
    def __init__(self, engine: ClientEngine, url: str) -> None:
        self.engine = engine
        self.url = url
        self._ws: ClientConnection | None = None
        self._recv_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self.closed = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self.closed.is_set()

    async def open(self) -> None:
        if self.is_open:
            return
        self.closed.clear()
        self._ws = await connect(self.url)
        self.engine.attach(self)
        await self.emit(InboundEvent.JOIN, self.engine.join_payload())
        self._recv_task = asyncio.create_task(self._recv_loop(), name="relay-session-recv")
        logger.info("Session opened to %s for room %s", self.url, self.engine.room_id)

    async def close(self) -> None:
        self.engine.detach()
        if self._recv_task is not None:
            self._recv_task.cancel()
            try:
                await self._recv_task
            except asyncio.CancelledError:
                pass
            self._recv_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self.closed.set()
        logger.info("Session closed for room %s", self.engine.room_id)

    async def emit(self, event_type: str, data: dict[str, Any]) -> None:
        if self._ws is None:
            raise SessionClosedError("session is not open")
        raw = WsInbound(type=event_type, data=data).model_dump_json()
        async with self._send_lock:
            await self._ws.send(raw)

    async def _recv_loop(self) -> None:
        assert self._ws is not None
        try:
            async for raw in self._ws:
                try:
                    frame = WsOutbound.model_validate_json(raw)
                except PydanticValidationError:
                    logger.warning("Dropping malformed frame")
                    continue
                try:
                    await self.engine.handle(frame.type, frame.data)
                except Exception:
                    logger.exception("Handler for %s failed", frame.type)
        except ConnectionClosed:
            logger.info("Connection to %s closed by peer", self.url)
        finally:
            self.engine.detach()
            self.closed.set()
