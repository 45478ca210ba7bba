from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from chat_core.domain.entities.presence import PresenceState
from chat_core.infrastructure.db.mappers import presence as mapper
from chat_core.infrastructure.db.models.presence import PresenceModel


class PresenceReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: UUID) -> PresenceState | None:
        model = await self._session.get(PresenceModel, user_id)
        return mapper.model_to_entity(model) if model else None

    async def list_all(self) -> list[PresenceState]:
        result = await self._session.execute(select(PresenceModel))
        return [mapper.model_to_entity(m) for m in result.scalars().all()]


class PresenceWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, state: PresenceState) -> None:
        stmt = (
            pg_insert(PresenceModel)
            .values(
                user_id=state.user_id,
                is_online=state.is_online,
                last_seen_at=state.last_seen_at,
            )
            .on_conflict_do_update(
                index_elements=[PresenceModel.user_id],
                set_={"is_online": state.is_online, "last_seen_at": state.last_seen_at},
            )
        )
        await self._session.execute(stmt)
