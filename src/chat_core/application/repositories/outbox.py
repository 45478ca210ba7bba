from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from chat_core.domain.value_objects.enums import EventKind


class OutboxWriter(Protocol):
    async def add(self, event_type: str, payload: dict[str, Any]) -> None: ...

    async def fetch_pending(self, batch_size: int) -> list[OutboxRecord]: ...

    async def mark_sent(self, ids: list[int]) -> None: ...

    async def mark_failed(self, record_id: int, next_retry_at: datetime) -> None: ...

    async def mark_dead(self, record_id: int) -> None: ...


class OutboxRecord:
    """Lightweight read-model for the outbox relay.

    ``payload`` is the fan-out envelope: {"topic", "kind", "data"}.
    """

    __slots__ = ("id", "event_type", "payload", "attempts")

    def __init__(
        self,
        id: int,
        event_type: str,
        payload: dict[str, Any],
        attempts: int,
    ) -> None:
        self.id = id
        self.event_type = event_type
        self.payload = payload
        self.attempts = attempts

    @property
    def topic(self) -> str:
        return self.payload["topic"]

    @property
    def kind(self) -> EventKind:
        return EventKind(self.payload["kind"])

    @property
    def data(self) -> dict[str, Any]:
        return self.payload.get("data", {})
