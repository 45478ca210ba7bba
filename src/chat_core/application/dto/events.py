from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from chat_core.domain.value_objects.enums import EventKind, FrameType


@dataclass(frozen=True, slots=True)
class ChannelEvent:
    """One frame delivered to a subscription."""

    topic: str
    type: FrameType
    kind: EventKind | None = None
    data: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None

    @property
    def items(self) -> list[dict[str, Any]]:
        """Snapshot rows of a sync frame."""
        return self.data.get("items", [])


@dataclass(frozen=True, slots=True)
class OutboxEventDTO:
    event_type: str
    topic: str
    kind: EventKind
    data: dict[str, Any]

    def as_payload(self) -> dict[str, Any]:
        return {"topic": self.topic, "kind": self.kind.value, "data": self.data}
