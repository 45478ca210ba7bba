"""Ephemeral typing indicators on ``typing:{cid}`` topics."""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta

from pydantic import ValidationError as PayloadError

from chat_core.application import topics
from chat_core.application.dto.events import ChannelEvent
from chat_core.application.dto.payloads import TypingPayload, dump
from chat_core.application.ports.clock import Clock, SystemClock
from chat_core.application.uow import UoWFactory
from chat_core.domain.entities.typing_state import TypingState
from chat_core.domain.value_objects.enums import EventKind, FrameType
from chat_core.realtime.fabric import ChannelFabric, Subscription
from chat_core.services import typing_service

logger = logging.getLogger(__name__)


class TypingSignalBus:
    def __init__(
        self,
        fabric: ChannelFabric,
        user_id: uuid.UUID,
        uow_factory: UoWFactory | None = None,
        *,
        ttl: float = 3.0,
        margin: float = 1.0,
        clock: Clock | None = None,
    ) -> None:
        self.user_id = user_id
        self._fabric = fabric
        self._uow_factory = uow_factory
        self._ttl = ttl
        self._max_age = timedelta(seconds=ttl + margin)
        self._clock = clock or SystemClock()
        self._timers: dict[tuple[uuid.UUID, uuid.UUID], asyncio.TimerHandle] = {}
        # cid -> user -> time the latest typing=True was seen
        self._seen: dict[uuid.UUID, dict[uuid.UUID, datetime]] = {}
        # cid -> users signalled since the current snapshot was requested
        self._touched: dict[uuid.UUID, set[uuid.UUID]] = {}
        self._watches: dict[uuid.UUID, tuple[Subscription, asyncio.Task[None]]] = {}
        self._background: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------ outbound

    async def set_typing(self, conversation_id: uuid.UUID, user_id: uuid.UUID | None = None) -> None:
        """Announce typing and (re)start the expiry timer."""
        user_id = user_id or self.user_id
        key = (conversation_id, user_id)
        self._cancel_timer(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self._ttl, self._expire, conversation_id, user_id)
        await self._signal(conversation_id, user_id, True)

    async def clear_typing(self, conversation_id: uuid.UUID, user_id: uuid.UUID | None = None) -> None:
        user_id = user_id or self.user_id
        self._cancel_timer((conversation_id, user_id))
        await self._signal(conversation_id, user_id, False)

    def _expire(self, conversation_id: uuid.UUID, user_id: uuid.UUID) -> None:
        self._timers.pop((conversation_id, user_id), None)
        logger.debug("Typing TTL elapsed for %s in %s", user_id, conversation_id)
        self._spawn(self.clear_typing(conversation_id, user_id))

    def _cancel_timer(self, key: tuple[uuid.UUID, uuid.UUID]) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    async def _signal(self, conversation_id: uuid.UUID, user_id: uuid.UUID, is_typing: bool) -> None:
        state = TypingState(
            conversation_id=conversation_id,
            user_id=user_id,
            is_typing=is_typing,
            updated_at=self._clock.now(),
        )
        await self._fabric.publish(
            topics.typing(conversation_id), EventKind.UPDATE, dump(TypingPayload, state),
        )
        await self._persist(state)

    async def _persist(self, state: TypingState) -> None:
        if self._uow_factory is None:
            return
        try:
            async with self._uow_factory() as uow:
                await typing_service.save(state, uow)
        except Exception:
            logger.warning(
                "Typing state for %s in %s not persisted", state.user_id, state.conversation_id,
                exc_info=True,
            )

    # ------------------------------------------------------------ inbound

    async def watch(self, conversation_id: uuid.UUID) -> None:
        if conversation_id in self._watches:
            return
        sub = await self._fabric.subscribe(
            topics.typing(conversation_id),
            snapshot=self._snapshot_for(conversation_id) if self._uow_factory else None,
        )
        task = asyncio.create_task(self._read(conversation_id, sub), name=f"typing-{conversation_id}")
        self._watches[conversation_id] = (sub, task)

    async def unwatch(self, conversation_id: uuid.UUID) -> None:
        entry = self._watches.pop(conversation_id, None)
        if entry is None:
            return
        sub, task = entry
        await self._fabric.unsubscribe(sub)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._seen.pop(conversation_id, None)
        self._touched.pop(conversation_id, None)

    def typing_users(self, conversation_id: uuid.UUID) -> set[uuid.UUID]:
        """Other users currently typing, excluding anything older than TTL + margin."""
        cutoff = self._clock.now() - self._max_age
        seen = self._seen.get(conversation_id, {})
        return {uid for uid, at in seen.items() if at > cutoff and uid != self.user_id}

    def _snapshot_for(self, conversation_id: uuid.UUID):
        async def _snapshot() -> list[dict]:
            self._touched[conversation_id] = set()
            async with self._uow_factory() as uow:
                return await typing_service.snapshot(
                    conversation_id, uow, now=self._clock.now(), max_age=self._max_age,
                )

        return _snapshot

    async def _read(self, conversation_id: uuid.UUID, sub: Subscription) -> None:
        async for event in sub:
            try:
                self._apply(conversation_id, event)
            except Exception:
                logger.exception("Typing frame on %s could not be applied", event.topic)

    def _apply(self, conversation_id: uuid.UUID, event: ChannelEvent) -> None:
        if event.type == FrameType.ERROR:
            logger.debug("Typing snapshot for %s unavailable: %s", conversation_id, event.error)
            return
        if event.type == FrameType.SYNC:
            # Stored rows carry their own timestamps.
            seen = {
                state.user_id: state.updated_at
                for state in (TypingPayload.model_validate(i).to_entity() for i in event.items)
                if state.is_typing
            }
            held = self._seen.get(conversation_id, {})
            for user_id in self._touched.get(conversation_id, ()):
                if user_id in held:
                    seen[user_id] = held[user_id]
                else:
                    seen.pop(user_id, None)
            self._seen[conversation_id] = seen
            return
        try:
            state = TypingPayload.model_validate(event.data).to_entity()
        except PayloadError:
            logger.warning("Ignoring malformed typing frame on %s", event.topic)
            return
        seen = self._seen.setdefault(conversation_id, {})
        self._touched.setdefault(conversation_id, set()).add(state.user_id)
        if state.is_typing:
            # Live events are aged from local receipt, not the sender's clock.
            seen[state.user_id] = self._clock.now()
        else:
            seen.pop(state.user_id, None)

    # ------------------------------------------------------------ teardown

    async def close(self) -> None:
        """Clear every indicator we still hold, then drop all watches."""
        for conversation_id, user_id in list(self._timers):
            await self.clear_typing(conversation_id, user_id)
        for conversation_id in list(self._watches):
            await self.unwatch(conversation_id)
        for task in list(self._background):
            task.cancel()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
