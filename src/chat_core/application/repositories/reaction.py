from __future__ import annotations

from typing import Protocol
from uuid import UUID

from chat_core.domain.entities.reaction import Reaction


class ReactionReader(Protocol):
    async def get(self, message_id: UUID, user_id: UUID) -> Reaction | None: ...

    async def list_for_message(self, message_id: UUID) -> list[Reaction]: ...

    async def list_for_conversation(self, conversation_id: UUID) -> list[Reaction]: ...


class ReactionWriter(Protocol):
    async def upsert(self, reaction: Reaction) -> None:
        """Insert or replace the single reaction row for (message, user)."""
        ...

    async def delete(self, message_id: UUID, user_id: UUID) -> None: ...
