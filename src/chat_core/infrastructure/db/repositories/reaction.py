from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from chat_core.domain.entities.reaction import Reaction
from chat_core.infrastructure.db.mappers import reaction as mapper
from chat_core.infrastructure.db.models.reaction import ReactionModel


class ReactionReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, message_id: UUID, user_id: UUID) -> Reaction | None:
        stmt = select(ReactionModel).where(
            ReactionModel.message_id == message_id,
            ReactionModel.user_id == user_id,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def list_for_message(self, message_id: UUID) -> list[Reaction]:
        stmt = (
            select(ReactionModel)
            .where(ReactionModel.message_id == message_id)
            .order_by(ReactionModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]

    async def list_for_conversation(self, conversation_id: UUID) -> list[Reaction]:
        stmt = (
            select(ReactionModel)
            .where(ReactionModel.conversation_id == conversation_id)
            .order_by(ReactionModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]


class ReactionWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, reaction: Reaction) -> None:
        stmt = (
            pg_insert(ReactionModel)
            .values(
                message_id=reaction.message_id,
                conversation_id=reaction.conversation_id,
                user_id=reaction.user_id,
                emoji=reaction.emoji,
                created_at=reaction.created_at,
            )
            .on_conflict_do_update(
                constraint="uq_reaction_member",
                set_={"emoji": reaction.emoji, "created_at": reaction.created_at},
            )
        )
        await self._session.execute(stmt)

    async def delete(self, message_id: UUID, user_id: UUID) -> None:
        stmt = delete(ReactionModel).where(
            ReactionModel.message_id == message_id,
            ReactionModel.user_id == user_id,
        )
        await self._session.execute(stmt)
