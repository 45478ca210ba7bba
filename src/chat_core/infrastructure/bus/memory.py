"""In-process broker for single-process deployments and tests."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from chat_core.application.exceptions import FabricDisconnected

logger = logging.getLogger(__name__)

_DROP = object()


class InMemoryBroker:
    """Topic → connected transports. Delivery is synchronous enqueue, so ordering per topic holds."""

    def __init__(self) -> None:
        self._subscribers: dict[str, set[InMemoryTransport]] = {}

    def attach(self, transport: InMemoryTransport, topic: str) -> None:
        self._subscribers.setdefault(topic, set()).add(transport)

    def detach(self, transport: InMemoryTransport, topic: str | None = None) -> None:
        topics = [topic] if topic is not None else list(self._subscribers)
        for t in topics:
            subs = self._subscribers.get(t)
            if subs:
                subs.discard(transport)
                if not subs:
                    del self._subscribers[t]

    def deliver(self, topic: str, raw: str) -> int:
        receivers = list(self._subscribers.get(topic, ()))
        for transport in receivers:
            transport._inbox.put_nowait((topic, raw))
        return len(receivers)

    def transport(self) -> InMemoryTransport:
        return InMemoryTransport(self)


class InMemoryTransport:
    """Implements application.ports.bus.Transport on an InMemoryBroker.

    ``go_offline`` simulates a network drop: the live connection breaks and
    connection attempts fail until ``go_online``.
    """

    def __init__(self, broker: InMemoryBroker) -> None:
        self._broker = broker
        self._inbox: asyncio.Queue[object] = asyncio.Queue()
        self._connected = False
        self.offline = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self.offline:
            raise FabricDisconnected("Network unreachable")
        self._inbox = asyncio.Queue()
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False
        self._broker.detach(self)

    async def subscribe(self, topic: str) -> None:
        self._require_connected()
        self._broker.attach(self, topic)

    async def unsubscribe(self, topic: str) -> None:
        self._broker.detach(self, topic)

    async def publish(self, topic: str, raw: str) -> None:
        self._require_connected()
        self._broker.deliver(topic, raw)

    async def listen(self) -> AsyncIterator[tuple[str, str]]:
        while True:
            item = await self._inbox.get()
            if item is _DROP:
                raise FabricDisconnected("Connection dropped")
            topic, raw = item  # type: ignore[misc]
            yield topic, raw

    def go_offline(self) -> None:
        self.offline = True
        self._connected = False
        self._broker.detach(self)
        self._inbox.put_nowait(_DROP)

    def go_online(self) -> None:
        self.offline = False

    def _require_connected(self) -> None:
        if not self._connected:
            raise FabricDisconnected("Not connected")
