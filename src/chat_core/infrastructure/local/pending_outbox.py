"""Client-local durable queue of message writes (SQLite via aiosqlite)."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text, delete, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from chat_core.application.exceptions import OutboxFullError
from chat_core.domain.entities.pending_send import PendingSend
from chat_core.infrastructure.db.mappers.message import attachment_from_json, attachment_to_json

logger = logging.getLogger(__name__)


class LocalBase(DeclarativeBase):
    pass


class PendingSendModel(LocalBase):
    __tablename__ = "pending_sends"

    position: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_msg_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    conversation_id: Mapped[str] = mapped_column(String(36), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(36), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachment: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _utc(value: datetime) -> datetime:
    # SQLite drops tzinfo; rows are written in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_entity(model: PendingSendModel) -> PendingSend:
    return PendingSend(
        client_msg_id=uuid.UUID(model.client_msg_id),
        conversation_id=uuid.UUID(model.conversation_id),
        sender_id=uuid.UUID(model.sender_id),
        content=model.content,
        attachment=attachment_from_json(model.attachment),
        attempts=model.attempts,
        created_at=_utc(model.created_at),
    )


class SqlitePendingOutbox:
    """Implements application.ports.outbox.PendingOutbox.

    Entries are replayed in insertion order. Enqueueing an already-queued
    client_msg_id is a no-op.
    """

    def __init__(self, url: str, *, capacity: int = 500) -> None:
        self._engine: AsyncEngine = create_async_engine(url)
        self._session_maker = async_sessionmaker(self._engine, expire_on_commit=False)
        self._capacity = capacity

    async def init(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(LocalBase.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    async def enqueue(self, item: PendingSend) -> None:
        async with self._session_maker() as session:
            count = await session.scalar(select(func.count()).select_from(PendingSendModel))
            if (count or 0) >= self._capacity:
                raise OutboxFullError(f"Pending outbox is full ({self._capacity} messages)")
            stmt = (
                sqlite_insert(PendingSendModel)
                .values(
                    client_msg_id=str(item.client_msg_id),
                    conversation_id=str(item.conversation_id),
                    sender_id=str(item.sender_id),
                    content=item.content,
                    attachment=attachment_to_json(item.attachment),
                    attempts=item.attempts,
                    created_at=_utc(item.created_at),
                )
                .on_conflict_do_nothing(index_elements=["client_msg_id"])
            )
            await session.execute(stmt)
            await session.commit()

    async def list_pending(self, limit: int = 100) -> list[PendingSend]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(PendingSendModel).order_by(PendingSendModel.position.asc()).limit(limit)
            )
            return [_to_entity(m) for m in result.scalars().all()]

    async def remove(self, client_msg_id: uuid.UUID) -> None:
        async with self._session_maker() as session:
            await session.execute(
                delete(PendingSendModel).where(PendingSendModel.client_msg_id == str(client_msg_id))
            )
            await session.commit()

    async def bump_attempts(self, client_msg_id: uuid.UUID) -> None:
        async with self._session_maker() as session:
            await session.execute(
                update(PendingSendModel)
                .where(PendingSendModel.client_msg_id == str(client_msg_id))
                .values(attempts=PendingSendModel.attempts + 1)
            )
            await session.commit()

    async def count(self) -> int:
        async with self._session_maker() as session:
            return int(await session.scalar(select(func.count()).select_from(PendingSendModel)) or 0)
