from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from chat_core.domain.entities.typing_state import TypingState


class TypingReader(Protocol):
    async def list_active(
        self, conversation_id: UUID, *, updated_after: datetime
    ) -> list[TypingState]: ...


class TypingWriter(Protocol):
    async def upsert(self, state: TypingState) -> None: ...

    async def delete(self, conversation_id: UUID, user_id: UUID) -> None: ...

    async def purge_older_than(self, ts: datetime) -> int: ...
