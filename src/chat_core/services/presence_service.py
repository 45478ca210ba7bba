from __future__ import annotations

import uuid

from chat_core.application.dto.payloads import PresencePayload, dump
from chat_core.application.ports.clock import Clock, SystemClock
from chat_core.application.uow import UnitOfWork
from chat_core.domain.entities.presence import PresenceState

_system_clock = SystemClock()


async def set_presence(
    user_id: uuid.UUID,
    is_online: bool,
    uow: UnitOfWork,
    *,
    clock: Clock = _system_clock,
) -> PresenceState:
    state = PresenceState(user_id=user_id, is_online=is_online, last_seen_at=clock.now())
    await uow.presence_w.upsert(state)
    await uow.commit()
    return state


async def get_presence(user_id: uuid.UUID, uow: UnitOfWork) -> PresenceState | None:
    return await uow.presence.get(user_id)


async def snapshot(uow: UnitOfWork) -> list[dict]:
    return [dump(PresencePayload, s) for s in await uow.presence.list_all()]
