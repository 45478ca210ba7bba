from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from chat_core.domain.entities.typing_state import TypingState
from chat_core.infrastructure.db.mappers import typing_indicator as mapper
from chat_core.infrastructure.db.models.typing_indicator import TypingIndicatorModel


class TypingReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_active(
        self,
        conversation_id: UUID,
        *,
        updated_after: datetime,
    ) -> list[TypingState]:
        stmt = select(TypingIndicatorModel).where(
            TypingIndicatorModel.conversation_id == conversation_id,
            TypingIndicatorModel.is_typing.is_(True),
            TypingIndicatorModel.updated_at > updated_after,
        )
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]


class TypingWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, state: TypingState) -> None:
        stmt = (
            pg_insert(TypingIndicatorModel)
            .values(
                conversation_id=state.conversation_id,
                user_id=state.user_id,
                is_typing=state.is_typing,
                updated_at=state.updated_at,
            )
            .on_conflict_do_update(
                index_elements=[TypingIndicatorModel.conversation_id, TypingIndicatorModel.user_id],
                set_={"is_typing": state.is_typing, "updated_at": state.updated_at},
            )
        )
        await self._session.execute(stmt)

    async def delete(self, conversation_id: UUID, user_id: UUID) -> None:
        stmt = delete(TypingIndicatorModel).where(
            TypingIndicatorModel.conversation_id == conversation_id,
            TypingIndicatorModel.user_id == user_id,
        )
        await self._session.execute(stmt)

    async def purge_older_than(self, ts: datetime) -> int:
        stmt = delete(TypingIndicatorModel).where(TypingIndicatorModel.updated_at < ts)
        result = await self._session.execute(stmt)
        return result.rowcount or 0
