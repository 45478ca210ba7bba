from __future__ import annotations

from typing import Protocol
from uuid import UUID

from chat_core.domain.entities.notification import NotificationEvent


class NotificationPresenter(Protocol):
    """Immediate local presentation (platform notification or in-app toast)."""

    async def present(self, event: NotificationEvent) -> None: ...


class ProfileDirectory(Protocol):
    async def display_name(self, user_id: UUID) -> str | None: ...
