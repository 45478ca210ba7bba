from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from chat_core.domain.entities.message import Message
from chat_core.domain.value_objects.cursor import MessageCursor
from chat_core.domain.value_objects.enums import MessageStatus
from chat_core.infrastructure.db.mappers import message as mapper
from chat_core.infrastructure.db.models.message import MessageModel


class MessageReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, message_id: UUID) -> Message | None:
        model = await self._session.get(MessageModel, message_id)
        return mapper.model_to_entity(model) if model else None

    async def list_messages(
        self,
        conversation_id: UUID,
        *,
        after: MessageCursor | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[Message]:
        stmt = (
            select(MessageModel)
            .where(MessageModel.conversation_id == conversation_id)
            .order_by(MessageModel.seq.asc())
            .limit(limit)
        )
        if after is not None:
            stmt = stmt.where(MessageModel.seq > after.seq)
        if since is not None:
            stmt = stmt.where(MessageModel.created_at >= since)
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]

    async def count_unread(self, conversation_id: UUID, user_id: UUID) -> int:
        stmt = select(func.count()).select_from(MessageModel).where(
            MessageModel.conversation_id == conversation_id,
            MessageModel.sender_id != user_id,
            MessageModel.status != MessageStatus.READ.value,
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())


class MessageWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_if_not_exists(self, message: Message) -> tuple[Message, bool]:
        """Insert message idempotently. Returns (message, created_flag)."""
        stmt = (
            pg_insert(MessageModel)
            .values(**mapper.entity_to_values(message))
            .on_conflict_do_nothing(constraint="uq_message_idempotency")
            .returning(MessageModel)
        )
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()

        if row is not None:
            return mapper.model_to_entity(row), True

        # Replay of an already-stored client_msg_id
        existing = await self.get_by_client_msg_id(
            message.conversation_id,
            message.sender_id,
            message.client_msg_id,
        )
        assert existing is not None
        return existing, False

    async def get_by_client_msg_id(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        client_msg_id: UUID,
    ) -> Message | None:
        stmt = select(MessageModel).where(
            MessageModel.conversation_id == conversation_id,
            MessageModel.sender_id == sender_id,
            MessageModel.client_msg_id == client_msg_id,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def advance_status(
        self,
        message_id: UUID,
        target: MessageStatus,
        at: datetime,
    ) -> Message | None:
        stmt = (
            update(MessageModel)
            .where(
                MessageModel.id == message_id,
                MessageModel.status.in_([s.value for s in target.lower()]),
            )
            .values(**_advance_values(target, at))
            .returning(MessageModel)
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    async def advance_conversation(
        self,
        conversation_id: UUID,
        recipient_id: UUID,
        target: MessageStatus,
        at: datetime,
    ) -> list[Message]:
        stmt = (
            update(MessageModel)
            .where(
                MessageModel.conversation_id == conversation_id,
                MessageModel.sender_id != recipient_id,
                MessageModel.status.in_([s.value for s in target.lower()]),
            )
            .values(**_advance_values(target, at))
            .returning(MessageModel)
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        updated = [mapper.model_to_entity(m) for m in result.scalars().all()]
        return sorted(updated, key=lambda m: m.cursor)


def _advance_values(target: MessageStatus, at: datetime) -> dict:
    values = {
        "status": target.value,
        "delivered_at": func.coalesce(MessageModel.delivered_at, at),
    }
    if target == MessageStatus.READ:
        values["read_at"] = at
    return values
