from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from chat_core.application.exceptions import ConflictError
from chat_core.domain.entities.conversation import Conversation, ordered_pair
from chat_core.infrastructure.db.mappers import conversation as mapper
from chat_core.infrastructure.db.models.conversation import ConversationModel


class ConversationReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        result = await self._session.get(ConversationModel, conversation_id)
        return mapper.model_to_entity(result) if result else None

    async def get_by_pair(self, user_a: UUID, user_b: UUID) -> Conversation | None:
        low, high = ordered_pair(user_a, user_b)
        stmt = select(ConversationModel).where(
            ConversationModel.user_a_id == low,
            ConversationModel.user_b_id == high,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def list_for_user(
        self,
        user_id: UUID,
        *,
        limit: int = 20,
    ) -> list[Conversation]:
        stmt = (
            select(ConversationModel)
            .where(
                or_(
                    ConversationModel.user_a_id == user_id,
                    ConversationModel.user_b_id == user_id,
                ),
                ConversationModel.is_archived.is_(False),
            )
            .order_by(
                ConversationModel.last_message_at.desc().nullslast(),
                ConversationModel.created_at.desc(),
            )
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]


class ConversationWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, conversation: Conversation) -> Conversation:
        stmt = (
            pg_insert(ConversationModel)
            .values(
                id=conversation.id,
                user_a_id=conversation.user_a_id,
                user_b_id=conversation.user_b_id,
                created_at=conversation.created_at,
                is_archived=conversation.is_archived,
            )
            .on_conflict_do_nothing(constraint="uq_conversation_pair")
            .returning(ConversationModel)
        )
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            raise ConflictError("Conversation for this pair already exists")
        return mapper.model_to_entity(row)

    async def touch_last_message_at(
        self,
        conversation_id: UUID,
        ts: datetime,
    ) -> None:
        stmt = (
            update(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .values(last_message_at=ts)
        )
        await self._session.execute(stmt)
