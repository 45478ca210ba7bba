from __future__ import annotations

import uuid

from chat_core.application.uow import UnitOfWork
from chat_core.domain.entities.notification import NotificationEvent


async def record(event: NotificationEvent, uow: UnitOfWork) -> None:
    await uow.notifications_w.add(event)
    await uow.commit()


async def list_for_user(
    user_id: uuid.UUID,
    uow: UnitOfWork,
    *,
    unread_only: bool = False,
    limit: int = 50,
) -> list[NotificationEvent]:
    return await uow.notifications.list_for_user(
        user_id, unread_only=unread_only, limit=limit,
    )


async def mark_read(
    user_id: uuid.UUID,
    ids: list[uuid.UUID],
    uow: UnitOfWork,
) -> int:
    if not ids:
        return 0
    updated = await uow.notifications_w.mark_read(user_id, ids)
    await uow.commit()
    return updated
