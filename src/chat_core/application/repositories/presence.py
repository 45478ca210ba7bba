from __future__ import annotations

from typing import Protocol
from uuid import UUID

from chat_core.domain.entities.presence import PresenceState


class PresenceReader(Protocol):
    async def get(self, user_id: UUID) -> PresenceState | None: ...

    async def list_all(self) -> list[PresenceState]: ...


class PresenceWriter(Protocol):
    async def upsert(self, state: PresenceState) -> None: ...
