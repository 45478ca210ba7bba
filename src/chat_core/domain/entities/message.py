from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from uuid import UUID

from chat_core.domain.entities.attachment import Attachment
from chat_core.domain.value_objects.cursor import MessageCursor
from chat_core.domain.value_objects.enums import MessageStatus


@dataclass(frozen=True, slots=True)
class Message:
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    client_msg_id: UUID
    content: str
    created_at: datetime
    status: MessageStatus = MessageStatus.SENT
    seq: int = 0
    attachment: Attachment | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None

    @property
    def cursor(self) -> MessageCursor:
        return MessageCursor(self.created_at, self.seq)

    def advanced(self, target: MessageStatus, at: datetime) -> Message:
        """Return a copy moved forward to ``target``; earlier targets return self."""
        if not self.status.can_advance_to(target):
            return self
        delivered_at = self.delivered_at or at
        read_at = at if target == MessageStatus.READ else self.read_at
        return replace(self, status=target, delivered_at=delivered_at, read_at=read_at)
