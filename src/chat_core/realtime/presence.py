from __future__ import annotations

import logging
import uuid
from datetime import datetime

from pydantic import ValidationError as PayloadError

from chat_core.application import topics
from chat_core.application.dto.events import ChannelEvent
from chat_core.application.dto.payloads import PresencePayload, dump
from chat_core.application.exceptions import TransientStoreError
from chat_core.application.ports.clock import Clock, SystemClock
from chat_core.application.retry import RetryPolicy
from chat_core.application.uow import UoWFactory
from chat_core.domain.entities.presence import PresenceState
from chat_core.domain.value_objects.enums import EventKind
from chat_core.realtime.fabric import ChannelFabric, Subscription, SubscriptionHandlers
from chat_core.services import presence_service

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Who is online, as seen through the ``presence`` topic.

    There is no heartbeat. A user goes offline on a clean disconnect; an
    abnormal exit is noticed by transport liveness and corrected by the next
    sync.
    """

    def __init__(
        self,
        fabric: ChannelFabric,
        uow_factory: UoWFactory,
        *,
        retry: RetryPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._fabric = fabric
        self._uow_factory = uow_factory
        self._retry = retry or RetryPolicy()
        self._clock = clock or SystemClock()
        self._states: dict[uuid.UUID, PresenceState] = {}
        self._local: set[uuid.UUID] = set()
        # users changed since the current snapshot was requested
        self._touched: set[uuid.UUID] = set()
        self._sub: Subscription | None = None

    async def start(self) -> None:
        self._sub = await self._fabric.subscribe(
            topics.PRESENCE,
            snapshot=self._snapshot,
            handlers=SubscriptionHandlers(on_sync=self._on_sync, on_event=self._on_event),
        )

    async def close(self) -> None:
        if self._sub is not None:
            await self._fabric.unsubscribe(self._sub)
            self._sub = None

    async def mark_online(self, user_id: uuid.UUID) -> PresenceState:
        self._local.add(user_id)
        return await self._announce(user_id, True)

    async def mark_offline(self, user_id: uuid.UUID) -> PresenceState:
        self._local.discard(user_id)
        return await self._announce(user_id, False)

    def is_online(self, user_id: uuid.UUID) -> bool:
        state = self._states.get(user_id)
        return state is not None and state.is_online

    def last_seen(self, user_id: uuid.UUID) -> datetime | None:
        state = self._states.get(user_id)
        return state.last_seen_at if state else None

    def online_users(self) -> set[uuid.UUID]:
        return {uid for uid, s in self._states.items() if s.is_online}

    async def _announce(self, user_id: uuid.UUID, is_online: bool) -> PresenceState:
        state = PresenceState(user_id=user_id, is_online=is_online, last_seen_at=self._clock.now())
        try:
            state = await self._retry.run("set_presence", lambda: self._store(user_id, is_online))
        except TransientStoreError:
            logger.warning("Presence for %s not persisted, publishing anyway", user_id)
        self._states[user_id] = state
        self._touched.add(user_id)
        await self._fabric.publish(
            topics.PRESENCE,
            EventKind.JOIN if is_online else EventKind.LEAVE,
            dump(PresencePayload, state),
        )
        return state

    async def _store(self, user_id: uuid.UUID, is_online: bool) -> PresenceState:
        async with self._uow_factory() as uow:
            return await presence_service.set_presence(user_id, is_online, uow, clock=self._clock)

    async def _snapshot(self) -> list[dict]:
        self._touched = set()

        async def _load() -> list[dict]:
            async with self._uow_factory() as uow:
                return await presence_service.snapshot(uow)

        return await self._retry.run("presence_snapshot", _load)

    async def _on_sync(self, event: ChannelEvent) -> None:
        states = {}
        for item in event.items:
            state = PresencePayload.model_validate(item).to_entity()
            states[state.user_id] = state
        # Changes seen after the read began win unless the row is newer.
        for user_id in self._touched:
            held = self._states.get(user_id)
            row = states.get(user_id)
            if held is not None and (row is None or _older(row, held)):
                states[user_id] = held
        self._states = states
        # A restart can leave our own row marked offline; re-announce.
        for user_id in list(self._local):
            if not self.is_online(user_id):
                await self._announce(user_id, True)

    async def _on_event(self, event: ChannelEvent) -> None:
        if event.kind not in (EventKind.JOIN, EventKind.LEAVE, EventKind.UPDATE):
            return
        try:
            state = PresencePayload.model_validate(event.data).to_entity()
        except PayloadError:
            logger.warning("Ignoring malformed presence frame")
            return
        held = self._states.get(state.user_id)
        if held is not None and _older(state, held):
            logger.debug("Ignoring stale presence frame for %s", state.user_id)
            return
        self._states[state.user_id] = state
        self._touched.add(state.user_id)


def _older(state: PresenceState, than: PresenceState) -> bool:
    if state.last_seen_at is None or than.last_seen_at is None:
        return False
    return state.last_seen_at < than.last_seen_at
