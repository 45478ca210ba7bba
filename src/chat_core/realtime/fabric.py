"""Channel fabric: topic-scoped broadcast with reconnect-driven resync.

One ChannelFabric per client process owns every subscription. Each
subscription is a queue of frames; a (re)join always yields a ``sync`` frame
built from the subscription's snapshot provider, so consumers reconcile by
diffing instead of trusting the incremental stream to be gapless.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from chat_core.application.dto.events import ChannelEvent
from chat_core.application.exceptions import FabricDisconnected
from chat_core.application.ports.bus import Transport
from chat_core.application.retry import backoff_delay
from chat_core.domain.value_objects.enums import EventKind, FrameType
from chat_core.infrastructure.bus.serializer import deserialize_event, serialize_event

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[], Awaitable[list[dict[str, Any]]]]
FrameHandler = Callable[[ChannelEvent], Coroutine[Any, Any, None]]


@dataclass(frozen=True, slots=True)
class SubscriptionHandlers:
    on_sync: FrameHandler | None = None
    on_event: FrameHandler | None = None
    on_error: FrameHandler | None = None

    def for_frame(self, frame: FrameType) -> FrameHandler | None:
        if frame == FrameType.SYNC:
            return self.on_sync
        if frame == FrameType.EVENT:
            return self.on_event
        return self.on_error


class Subscription:
    """Handle returned by ChannelFabric.subscribe; also an async iterator of frames."""

    def __init__(self, topic: str, snapshot: SnapshotProvider | None) -> None:
        self.id = uuid.uuid4().hex
        self.topic = topic
        self.snapshot = snapshot
        self.active = True
        self.stale = True
        self._queue: asyncio.Queue[ChannelEvent | None] = asyncio.Queue()
        self._pump: asyncio.Task[None] | None = None

    async def receive(self) -> ChannelEvent | None:
        """Next frame, or None once the subscription is closed."""
        if not self.active and self._queue.empty():
            return None
        return await self._queue.get()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> ChannelEvent:
        event = await self.receive()
        if event is None:
            raise StopAsyncIteration
        return event

    def _deliver(self, event: ChannelEvent) -> None:
        if self.active:
            self._queue.put_nowait(event)

    def _close(self) -> None:
        self.active = False
        self._queue.put_nowait(None)

    def __repr__(self) -> str:
        return f"<Subscription {self.topic} {self.id[:8]} stale={self.stale}>"


class ChannelFabric:
    """Implements application.ports.bus.EventPublisher and owns all subscriptions."""

    def __init__(
        self,
        transport: Transport,
        *,
        connect_timeout: float = 5.0,
        reconnect_base_delay: float = 0.5,
        reconnect_max_delay: float = 30.0,
    ) -> None:
        self._transport = transport
        self._connect_timeout = connect_timeout
        self._reconnect_base_delay = reconnect_base_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._subs: dict[str, list[Subscription]] = {}
        self._connected = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    @property
    def topics(self) -> list[str]:
        return list(self._subs)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="channel-fabric")
            logger.info("Channel fabric started")

    async def wait_connected(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout)

    async def close(self) -> None:
        """Tear down every subscription and the transport."""
        if self._closed:
            return
        self._closed = True
        for subs in list(self._subs.values()):
            for sub in list(subs):
                await self.unsubscribe(sub)
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        for task in list(self._background):
            task.cancel()
        self._connected.clear()
        await self._transport.disconnect()
        logger.info("Channel fabric closed")

    # ------------------------------------------------------------ subscriptions

    async def subscribe(
        self,
        topic: str,
        *,
        snapshot: SnapshotProvider | None = None,
        handlers: SubscriptionHandlers | None = None,
    ) -> Subscription:
        """Register interest in a topic. Safe before the transport is connected."""
        if self._closed:
            raise RuntimeError("Channel fabric is closed")
        sub = Subscription(topic, snapshot)
        first = topic not in self._subs
        self._subs.setdefault(topic, []).append(sub)
        if handlers is not None:
            sub._pump = asyncio.create_task(
                self._pump(sub, handlers), name=f"fabric-pump-{topic}",
            )

        if self._connected.is_set():
            try:
                if first:
                    await self._transport.subscribe(topic)
            except FabricDisconnected:
                logger.info("Transport dropped while joining %s; will rejoin", topic)
                return sub
            self._spawn(self._sync(sub))
        return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        """Idempotent; never raises."""
        if not sub.active:
            return
        sub._close()
        subs = self._subs.get(sub.topic)
        if subs is not None:
            if sub in subs:
                subs.remove(sub)
            if not subs:
                del self._subs[sub.topic]
                if self._connected.is_set():
                    try:
                        await self._transport.unsubscribe(sub.topic)
                    except FabricDisconnected:
                        logger.debug("Transport gone while leaving %s", sub.topic)
        pump = sub._pump
        if pump is not None and pump is not asyncio.current_task():
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass

    async def resync(self, sub: Subscription) -> None:
        """Re-issue a sync frame for one subscription on demand."""
        if sub.active and self._connected.is_set():
            await self._sync(sub)

    # ------------------------------------------------------------ publishing

    async def publish(self, topic: str, kind: EventKind, data: dict[str, Any]) -> None:
        """Fire-and-forget. Nothing is buffered while disconnected."""
        if not self._connected.is_set():
            logger.debug("Fabric offline, dropping %s on %s", kind, topic)
            return
        raw = serialize_event(topic, kind, data)
        try:
            await self._transport.publish(topic, raw)
        except FabricDisconnected as exc:
            logger.warning("Publish to %s failed: %s", topic, exc)

    # ------------------------------------------------------------ connection loop

    async def _run(self) -> None:
        attempt = 0
        while not self._closed:
            try:
                await asyncio.wait_for(self._transport.connect(), self._connect_timeout)
            except (FabricDisconnected, TimeoutError, OSError) as exc:
                attempt += 1
                delay = backoff_delay(
                    attempt, self._reconnect_base_delay, self._reconnect_max_delay,
                )
                logger.warning(
                    "Fabric connect attempt %d failed (%s), retrying in %.2fs",
                    attempt, exc, delay,
                )
                await asyncio.sleep(delay)
                continue

            attempt = 0
            try:
                self._connected.set()
                await self._join_all()
                logger.info("Fabric connected, %d topics active", len(self._subs))
                async for topic, raw in self._transport.listen():
                    self._dispatch(topic, raw)
            except FabricDisconnected as exc:
                logger.warning("Fabric transport lost: %s", exc)
            finally:
                self._connected.clear()
                self._mark_stale()
                await self._transport.disconnect()

    async def _join_all(self) -> None:
        for topic in list(self._subs):
            await self._transport.subscribe(topic)
        for subs in list(self._subs.values()):
            for sub in list(subs):
                self._spawn(self._sync(sub))

    def _mark_stale(self) -> None:
        for subs in self._subs.values():
            for sub in subs:
                sub.stale = True

    async def _sync(self, sub: Subscription) -> None:
        if sub.snapshot is None:
            sub.stale = False
            sub._deliver(ChannelEvent(topic=sub.topic, type=FrameType.SYNC))
            return
        try:
            items = await sub.snapshot()
        except Exception as exc:
            logger.warning("Snapshot for %s failed: %s", sub.topic, exc)
            sub._deliver(ChannelEvent(topic=sub.topic, type=FrameType.ERROR, error=exc))
            return
        sub.stale = False
        sub._deliver(
            ChannelEvent(topic=sub.topic, type=FrameType.SYNC, data={"items": items})
        )

    def _dispatch(self, topic: str, raw: str) -> None:
        try:
            event = deserialize_event(raw)
        except ValueError:
            logger.warning("Dropping malformed frame on %s", topic)
            return
        for sub in list(self._subs.get(topic, ())):
            sub._deliver(event)

    async def _pump(self, sub: Subscription, handlers: SubscriptionHandlers) -> None:
        async for event in sub:
            handler = handlers.for_frame(event.type)
            if handler is None:
                continue
            try:
                await handler(event)
            except Exception:
                logger.exception("Handler for %s failed", sub.topic)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
