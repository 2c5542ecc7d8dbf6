"""Redis Pub/Sub transport for the fan-out channel."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

logger = logging.getLogger(__name__)

OnRawMessage = Callable[[str], Awaitable[None]]


class RedisChannelPublisher:
    """Implements application.ports.bus.FanoutPublisher."""

    def __init__(self, redis: aioredis.Redis, channel: str) -> None:
        self._redis = redis
        self._channel = channel

    async def publish(self, raw: str) -> None:
        receivers = await self._redis.publish(self._channel, raw)
        if not receivers:
            # our own subscriber should always be listening
            logger.warning("Fan-out on %s reached no subscribers", self._channel)


class RedisChannelSubscriber:
    """Background task feeding every message on one channel to ``on_message``.

    A dropped Redis connection is retried after ``retry_delay`` seconds;
    rooms on this process stop receiving remote broadcasts meanwhile.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str,
        on_message: OnRawMessage,
        *,
        retry_delay: float = 1.0,
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._on_message = on_message
        self._retry_delay = retry_delay
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name="relay-fanout-subscriber")
        logger.info("Fan-out subscriber started on channel=%s", self._channel)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Fan-out subscriber stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self._listen()
            except RedisConnectionError:
                logger.warning(
                    "Lost Redis on %s, retrying in %.1fs", self._channel, self._retry_delay,
                )
                await asyncio.sleep(self._retry_delay)

    async def _listen(self) -> None:
        pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(self._channel)
        try:
            async for message in pubsub.listen():
                if message is None or message["type"] != "message":
                    continue
                data = message["data"]
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                try:
                    await self._on_message(data)
                except Exception:
                    logger.exception("Error delivering fan-out message")
        finally:
            await pubsub.aclose()
