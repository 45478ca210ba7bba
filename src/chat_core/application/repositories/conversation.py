from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from chat_core.domain.entities.conversation import Conversation


class ConversationReader(Protocol):
    async def get_by_id(self, conversation_id: UUID) -> Conversation | None: ...

    async def get_by_pair(self, user_a: UUID, user_b: UUID) -> Conversation | None:
        """Find the conversation for an unordered pair of users."""
        ...

    async def list_for_user(
        self, user_id: UUID, *, limit: int = 20
    ) -> list[Conversation]: ...


class ConversationWriter(Protocol):
    async def create(self, conversation: Conversation) -> Conversation:
        """Insert. Raise ConflictError if the pair already has a conversation."""
        ...

    async def touch_last_message_at(
        self, conversation_id: UUID, ts: datetime
    ) -> None: ...
