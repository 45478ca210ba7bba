"""Redis Pub/Sub: the relay-side publisher and the fabric transport."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from chat_core.application.exceptions import FabricDisconnected
from chat_core.domain.value_objects.enums import EventKind
from chat_core.infrastructure.bus.serializer import serialize_event

logger = logging.getLogger(__name__)

_LINK_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


class RedisPubSubPublisher:
    """Implements application.ports.bus.EventPublisher."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def publish(self, topic: str, kind: EventKind, data: dict[str, Any]) -> None:
        raw = serialize_event(topic, kind, data)
        await self._redis.publish(topic, raw)


class RedisTransport:
    """Implements application.ports.bus.Transport over one pub/sub connection."""

    def __init__(self, url: str, *, poll_timeout: float = 1.0) -> None:
        self._url = url
        self._poll_timeout = poll_timeout
        self._redis: aioredis.Redis | None = None
        self._pubsub: Any = None
        self._topics: set[str] = set()

    async def connect(self) -> None:
        try:
            self._redis = aioredis.from_url(self._url, decode_responses=True)
            await self._redis.ping()
            self._pubsub = self._redis.pubsub()
        except _LINK_ERRORS as exc:
            await self.disconnect()
            raise FabricDisconnected(str(exc)) from exc
        logger.info("Redis transport connected")

    async def disconnect(self) -> None:
        pubsub, redis = self._pubsub, self._redis
        self._pubsub = None
        self._redis = None
        self._topics.clear()
        if pubsub is not None:
            try:
                await pubsub.aclose()
            except _LINK_ERRORS:
                logger.debug("Error closing pubsub", exc_info=True)
        if redis is not None:
            try:
                await redis.aclose()
            except _LINK_ERRORS:
                logger.debug("Error closing redis client", exc_info=True)

    async def subscribe(self, topic: str) -> None:
        pubsub = self._require_pubsub()
        try:
            await pubsub.subscribe(topic)
        except _LINK_ERRORS as exc:
            raise FabricDisconnected(str(exc)) from exc
        self._topics.add(topic)

    async def unsubscribe(self, topic: str) -> None:
        self._topics.discard(topic)
        if self._pubsub is None:
            return
        try:
            await self._pubsub.unsubscribe(topic)
        except _LINK_ERRORS:
            logger.debug("Unsubscribe from %s failed", topic, exc_info=True)

    async def publish(self, topic: str, raw: str) -> None:
        if self._redis is None:
            raise FabricDisconnected("Not connected")
        try:
            await self._redis.publish(topic, raw)
        except _LINK_ERRORS as exc:
            raise FabricDisconnected(str(exc)) from exc

    async def listen(self) -> AsyncIterator[tuple[str, str]]:
        while True:
            pubsub = self._require_pubsub()
            if not self._topics:
                await asyncio.sleep(self._poll_timeout)
                continue
            try:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self._poll_timeout,
                )
            except _LINK_ERRORS as exc:
                raise FabricDisconnected(str(exc)) from exc
            if message is None or message["type"] != "message":
                continue
            yield message["channel"], message["data"]

    def _require_pubsub(self) -> Any:
        if self._pubsub is None:
            raise FabricDisconnected("Not connected")
        return self._pubsub
