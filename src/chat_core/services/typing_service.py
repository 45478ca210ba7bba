from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from chat_core.application.dto.payloads import TypingPayload, dump
from chat_core.application.uow import UnitOfWork
from chat_core.domain.entities.typing_state import TypingState


async def save(state: TypingState, uow: UnitOfWork) -> None:
    if state.is_typing:
        await uow.typing_w.upsert(state)
    else:
        await uow.typing_w.delete(state.conversation_id, state.user_id)
    await uow.commit()


async def snapshot(
    conversation_id: uuid.UUID,
    uow: UnitOfWork,
    *,
    now: datetime,
    max_age: timedelta,
) -> list[dict]:
    rows = await uow.typing.list_active(conversation_id, updated_after=now - max_age)
    return [dump(TypingPayload, r) for r in rows if r.is_typing]


async def purge_stale(uow: UnitOfWork, *, older_than: datetime) -> int:
    removed = await uow.typing_w.purge_older_than(older_than)
    await uow.commit()
    return removed
