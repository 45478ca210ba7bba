from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime

from pydantic import ValidationError as PayloadError

from chat_core.application import topics
from chat_core.application.dto.events import ChannelEvent
from chat_core.application.dto.payloads import ReactionPayload
from chat_core.application.ports.clock import Clock, SystemClock
from chat_core.application.retry import RetryPolicy
from chat_core.application.uow import UoWFactory
from chat_core.domain.entities.reaction import Reaction, ReactionGroup
from chat_core.domain.reactions import group_reactions
from chat_core.domain.value_objects.enums import FrameType
from chat_core.realtime.fabric import ChannelFabric, Subscription
from chat_core.services import reaction_service

logger = logging.getLogger(__name__)


class ReactionAggregator:
    """Client-side reaction sets, one per watched conversation.

    State is keyed by (message_id, user_id) so each user holds at most one
    reaction per message; groups are recomputed from the full set on read.
    Every applied change, removals included, leaves its timestamp behind so
    a late frame for an older change is ignored.
    """

    def __init__(
        self,
        fabric: ChannelFabric,
        user_id: uuid.UUID,
        uow_factory: UoWFactory,
        *,
        retry: RetryPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.user_id = user_id
        self._fabric = fabric
        self._uow_factory = uow_factory
        self._retry = retry or RetryPolicy()
        self._clock = clock or SystemClock()
        self._reactions: dict[tuple[uuid.UUID, uuid.UUID], Reaction] = {}
        # cid -> key -> time of the latest change applied
        self._changed: dict[uuid.UUID, dict[tuple[uuid.UUID, uuid.UUID], datetime]] = {}
        # cid -> keys changed since the current snapshot was requested
        self._touched: dict[uuid.UUID, set[tuple[uuid.UUID, uuid.UUID]]] = {}
        self._watches: dict[uuid.UUID, tuple[Subscription, asyncio.Task[None]]] = {}

    async def watch(self, conversation_id: uuid.UUID) -> None:
        if conversation_id in self._watches:
            return

        async def _snapshot() -> list[dict]:
            self._touched[conversation_id] = set()

            async def _load() -> list[dict]:
                async with self._uow_factory() as uow:
                    return await reaction_service.conversation_snapshot(conversation_id, uow)

            return await self._retry.run("reaction_snapshot", _load)

        sub = await self._fabric.subscribe(topics.reactions(conversation_id), snapshot=_snapshot)
        task = asyncio.create_task(
            self._read(conversation_id, sub), name=f"reactions-{conversation_id}",
        )
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
        self._drop_conversation(conversation_id)
        self._changed.pop(conversation_id, None)
        self._touched.pop(conversation_id, None)

    async def close(self) -> None:
        for conversation_id in list(self._watches):
            await self.unwatch(conversation_id)

    async def set_reaction(self, message_id: uuid.UUID, emoji: str) -> Reaction | None:
        """Toggle our reaction in the store, then apply the net result locally."""

        async def _set() -> Reaction | None:
            async with self._uow_factory() as uow:
                return await reaction_service.set_reaction(
                    message_id, self.user_id, emoji, uow, clock=self._clock,
                )

        result = await self._retry.run("set_reaction", _set)
        key = (message_id, self.user_id)
        held = self._reactions.get(key)
        if result is not None:
            self._store(result.conversation_id, key, result, result.created_at)
        elif held is not None:
            self._store(held.conversation_id, key, None, self._clock.now())
        return result

    def groups(self, message_id: uuid.UUID) -> list[ReactionGroup]:
        return group_reactions(r for r in self._reactions.values() if r.message_id == message_id)

    def reaction_of(self, message_id: uuid.UUID, user_id: uuid.UUID) -> str | None:
        r = self._reactions.get((message_id, user_id))
        return r.emoji if r else None

    async def _read(self, conversation_id: uuid.UUID, sub: Subscription) -> None:
        async for event in sub:
            try:
                self._apply(conversation_id, event)
            except Exception:
                logger.exception("Reaction frame on %s could not be applied", event.topic)

    def _apply(self, conversation_id: uuid.UUID, event: ChannelEvent) -> None:
        if event.type == FrameType.ERROR:
            logger.warning("Reaction snapshot for %s failed: %s", conversation_id, event.error)
            return
        if event.type == FrameType.SYNC:
            self._merge_snapshot(conversation_id, event.items)
            return
        try:
            payload = ReactionPayload.model_validate(event.data)
        except PayloadError:
            logger.warning("Ignoring malformed reaction frame on %s", event.topic)
            return
        key = (payload.message_id, payload.user_id)
        changed = self._changed.get(conversation_id, {}).get(key)
        if changed is not None and payload.created_at < changed:
            logger.debug("Ignoring stale reaction frame for %s on %s", key, event.topic)
            return
        self._store(conversation_id, key, payload.to_entity(), payload.created_at)

    def _merge_snapshot(self, conversation_id: uuid.UUID, items: list[dict]) -> None:
        """Take the stored rows, except where a newer change arrived during the read."""
        rows = {}
        for item in items:
            reaction = ReactionPayload.model_validate(item).to_entity()
            if reaction is not None:
                rows[(reaction.message_id, reaction.user_id)] = reaction
        touched = set(self._touched.get(conversation_id, ()))
        changed = dict(self._changed.get(conversation_id, {}))
        kept = {key: self._reactions.get(key) for key in touched}

        self._drop_conversation(conversation_id)
        for key, reaction in rows.items():
            if key not in touched:
                self._store(conversation_id, key, reaction, reaction.created_at)
        for key, held in kept.items():
            row = rows.get(key)
            if row is not None and (key not in changed or row.created_at > changed[key]):
                self._store(conversation_id, key, row, row.created_at)
            elif held is not None:
                self._reactions[key] = held

    def _store(
        self,
        conversation_id: uuid.UUID,
        key: tuple[uuid.UUID, uuid.UUID],
        reaction: Reaction | None,
        at: datetime,
    ) -> None:
        if reaction is None:
            self._reactions.pop(key, None)
        else:
            self._reactions[key] = reaction
        self._changed.setdefault(conversation_id, {})[key] = at
        self._touched.setdefault(conversation_id, set()).add(key)

    def _drop_conversation(self, conversation_id: uuid.UUID) -> None:
        for key in [k for k, r in self._reactions.items() if r.conversation_id == conversation_id]:
            del self._reactions[key]
