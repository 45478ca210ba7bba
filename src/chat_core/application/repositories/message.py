from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from chat_core.domain.entities.message import Message
from chat_core.domain.value_objects.cursor import MessageCursor
from chat_core.domain.value_objects.enums import MessageStatus


class MessageReader(Protocol):
    async def get_by_id(self, message_id: UUID) -> Message | None: ...

    async def list_messages(
        self,
        conversation_id: UUID,
        *,
        after: MessageCursor | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[Message]:
        """Ascending by seq, strictly after ``after`` / at or after ``since``."""
        ...

    async def count_unread(self, conversation_id: UUID, user_id: UUID) -> int:
        """Messages from the other participant not yet read."""
        ...


class MessageWriter(Protocol):
    async def create_if_not_exists(self, message: Message) -> tuple[Message, bool]:
        """Insert message. Return (message, created). If conflict on client_msg_id → return existing."""
        ...

    async def get_by_client_msg_id(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        client_msg_id: UUID,
    ) -> Message | None: ...

    async def advance_status(
        self, message_id: UUID, target: MessageStatus, at: datetime
    ) -> Message | None:
        """Compare-and-set: move forward only from a lower-ranked status.

        Returns the updated message, or None when nothing changed.
        """
        ...

    async def advance_conversation(
        self,
        conversation_id: UUID,
        recipient_id: UUID,
        target: MessageStatus,
        at: datetime,
    ) -> list[Message]:
        """Advance every message not sent by ``recipient_id`` that ranks below ``target``."""
        ...
