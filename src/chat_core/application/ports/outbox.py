from __future__ import annotations

from typing import Protocol
from uuid import UUID

from chat_core.domain.entities.pending_send import PendingSend


class PendingOutbox(Protocol):
    """Client-local durable queue of message writes the ledger has not accepted yet."""

    async def enqueue(self, item: PendingSend) -> None:
        """Raise OutboxFullError when at capacity."""
        ...

    async def list_pending(self, limit: int = 100) -> list[PendingSend]: ...

    async def remove(self, client_msg_id: UUID) -> None: ...

    async def bump_attempts(self, client_msg_id: UUID) -> None: ...

    async def count(self) -> int: ...
