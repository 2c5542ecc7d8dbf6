from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from room_relay.api.deps import open_uow
from room_relay.api.middleware.correlation_id import CorrelationIdMiddleware
from room_relay.api.v1.routers import health, rooms, ws
from room_relay.application.exceptions import (
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from room_relay.config import settings
from room_relay.infrastructure.bus.fanout import RedisFanoutHub, deliver_fanout
from room_relay.infrastructure.bus.redis_pubsub import (
    RedisChannelPublisher,
    RedisChannelSubscriber,
)
from room_relay.infrastructure.ws.manager import ConnectionManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    app.state.redis = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )
    logger.info("Redis connection pool created")

    manager: ConnectionManager = app.state.manager

    async def _on_fanout(raw: str) -> None:
        await deliver_fanout(manager, raw)

    subscriber = RedisChannelSubscriber(
        app.state.redis,
        settings.REDIS_FANOUT_CHANNEL,
        _on_fanout,
    )
    await subscriber.start()
    app.state.pubsub_subscriber = subscriber
    app.state.hub = RedisFanoutHub(
        manager,
        RedisChannelPublisher(app.state.redis, settings.REDIS_FANOUT_CHANNEL),
    )

    yield

    await subscriber.stop()
    await app.state.redis.aclose()
    logger.info("Redis connection pool closed")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Room Relay",
        version="0.1.0",
        lifespan=lifespan,
    )

    # single-process defaults; lifespan swaps in the Redis fan-out hub
    app.state.manager = ConnectionManager()
    app.state.hub = app.state.manager
    app.state.uow_factory = open_uow

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(rooms.router)
    app.include_router(ws.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(_req: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.detail})

    @app.exception_handler(ValidationError)
    async def _validation(_req: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.detail})

    @app.exception_handler(PersistenceError)
    async def _persistence(_req: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Store error: %s", exc.detail)
        return JSONResponse(status_code=503, content={"detail": "store unavailable"})
