from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from chat_core.domain.entities.message import Message
from chat_core.domain.value_objects.enums import SendState


@dataclass(frozen=True, slots=True)
class SendResult:
    """What the user sees for a send: pending while retrying, sent once acknowledged."""

    state: SendState
    client_msg_id: UUID
    message: Message | None = None
    detail: str = ""
