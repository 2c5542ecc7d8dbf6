"""Request/connection correlation id.

Pure ASGI so it covers WebSocket upgrades as well as plain HTTP: every log
line written while a socket is open carries the id the client sent in
``X-Request-ID`` (or a fresh one).
"""
from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")

HEADER = "X-Request-ID"


class CorrelationIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        cid = Headers(scope=scope).get(HEADER) or uuid.uuid4().hex
        token = correlation_id_ctx.set(cid)

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[HEADER] = cid
            await send(message)

        try:
            await self.app(scope, receive, send_with_id)
        finally:
            correlation_id_ctx.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Stamps ``record.correlation_id`` so formatters can print it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_ctx.get() or "-"
        return True
