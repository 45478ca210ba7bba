from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol

from chat_core.domain.value_objects.enums import EventKind


class EventPublisher(Protocol):
    async def publish(self, topic: str, kind: EventKind, data: dict[str, Any]) -> None: ...


class Transport(Protocol):
    """Raw topic transport underneath the channel fabric.

    ``listen`` yields (topic, raw) pairs and raises FabricDisconnected when the
    connection is lost.
    """

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def subscribe(self, topic: str) -> None: ...

    async def unsubscribe(self, topic: str) -> None: ...

    async def publish(self, topic: str, raw: str) -> None: ...

    def listen(self) -> AsyncIterator[tuple[str, str]]: ...
