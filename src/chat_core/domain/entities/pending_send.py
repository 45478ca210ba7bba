from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from chat_core.domain.entities.attachment import Attachment


@dataclass(frozen=True, slots=True)
class PendingSend:
    """A message write parked in the local outbox until the ledger accepts it."""

    client_msg_id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    created_at: datetime
    attachment: Attachment | None = None
    attempts: int = 0
