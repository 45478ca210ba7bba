from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chat_core.domain.entities.notification import NotificationEvent
from chat_core.infrastructure.db.mappers import notification as mapper
from chat_core.infrastructure.db.models.notification import NotificationModel


class NotificationReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_for_user(
        self,
        user_id: UUID,
        *,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[NotificationEvent]:
        stmt = (
            select(NotificationModel)
            .where(NotificationModel.recipient_id == user_id)
            .order_by(NotificationModel.created_at.desc())
            .limit(limit)
        )
        if unread_only:
            stmt = stmt.where(NotificationModel.is_read.is_(False))
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]


class NotificationWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, event: NotificationEvent) -> None:
        self._session.add(mapper.entity_to_model(event))
        await self._session.flush()

    async def mark_read(self, user_id: UUID, ids: list[UUID]) -> int:
        stmt = (
            update(NotificationModel)
            .where(
                NotificationModel.recipient_id == user_id,
                NotificationModel.id.in_(ids),
                NotificationModel.is_read.is_(False),
            )
            .values(is_read=True)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0
