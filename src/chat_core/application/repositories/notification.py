from __future__ import annotations

from typing import Protocol
from uuid import UUID

from chat_core.domain.entities.notification import NotificationEvent


class NotificationReader(Protocol):
    async def list_for_user(
        self, user_id: UUID, *, unread_only: bool = False, limit: int = 50
    ) -> list[NotificationEvent]: ...


class NotificationWriter(Protocol):
    async def add(self, event: NotificationEvent) -> None: ...

    async def mark_read(self, user_id: UUID, ids: list[UUID]) -> int: ...
