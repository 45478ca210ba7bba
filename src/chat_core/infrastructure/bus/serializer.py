"""Channel envelope encoding shared by every transport."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from chat_core.application.dto.events import ChannelEvent
from chat_core.domain.value_objects.enums import EventKind, FrameType


class ChannelEnvelope(BaseModel):
    topic: str
    type: FrameType = FrameType.EVENT
    kind: EventKind | None = None
    data: dict[str, Any] = {}


def serialize_event(topic: str, kind: EventKind, data: dict[str, Any]) -> str:
    envelope = ChannelEnvelope(topic=topic, type=FrameType.EVENT, kind=kind, data=data)
    return envelope.model_dump_json()


def deserialize_event(raw: str | bytes) -> ChannelEvent:
    envelope = ChannelEnvelope.model_validate_json(raw)
    return ChannelEvent(
        topic=envelope.topic,
        type=envelope.type,
        kind=envelope.kind,
        data=envelope.data,
    )
