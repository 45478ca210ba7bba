"""Local view of one conversation, reconciled by a single writer.

Every change (local send, remote insert/update, sync snapshot, status
advance) is queued and applied by one task in arrival order.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PayloadError

from chat_core.application import topics
from chat_core.application.dto.events import ChannelEvent
from chat_core.application.dto.message import SendResult
from chat_core.application.dto.payloads import MessagePayload, dump
from chat_core.application.exceptions import TransientStoreError
from chat_core.application.ports.clock import Clock, SystemClock
from chat_core.application.retry import RetryPolicy
from chat_core.application.uow import UoWFactory
from chat_core.domain.entities.attachment import Attachment
from chat_core.domain.entities.conversation import Conversation
from chat_core.domain.entities.message import Message
from chat_core.domain.value_objects.cursor import MessageCursor
from chat_core.domain.value_objects.enums import EventKind, FrameType, MessageStatus, SendState
from chat_core.realtime.fabric import ChannelFabric, Subscription
from chat_core.realtime.sender import MessageSender
from chat_core.services import ledger_service

logger = logging.getLogger(__name__)

_PAGE = 200


@dataclass(frozen=True, slots=True)
class PendingItem:
    message: Message
    state: SendState


class ConversationView:
    def __init__(
        self,
        conversation: Conversation,
        user_id: uuid.UUID,
        fabric: ChannelFabric,
        uow_factory: UoWFactory,
        sender: MessageSender,
        *,
        retry: RetryPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.conversation = conversation
        self.user_id = user_id
        self.visible = False
        self.degraded = False
        self._fabric = fabric
        self._uow_factory = uow_factory
        self._sender = sender
        self._retry = retry or RetryPolicy()
        self._clock = clock or SystemClock()
        self._messages: dict[uuid.UUID, Message] = {}
        self._pending: dict[uuid.UUID, PendingItem] = {}
        self._cursor: MessageCursor | None = None
        self._commands: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._synced = asyncio.Event()
        self._sub: Subscription | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._advance_task: asyncio.Task[None] | None = None
        self._advance_again = False

    @property
    def conversation_id(self) -> uuid.UUID:
        return self.conversation.id

    @property
    def cursor(self) -> MessageCursor | None:
        """Position of the newest confirmed message seen."""
        return self._cursor

    # ------------------------------------------------------------ lifecycle

    async def start(self) -> None:
        for item in await self._sender.pending_for(self.conversation_id):
            self._pending[item.client_msg_id] = PendingItem(
                Message(
                    id=item.client_msg_id,
                    conversation_id=item.conversation_id,
                    sender_id=item.sender_id,
                    client_msg_id=item.client_msg_id,
                    content=item.content,
                    attachment=item.attachment,
                    created_at=item.created_at,
                ),
                SendState.PENDING,
            )
        self._sub = await self._fabric.subscribe(
            topics.messages(self.conversation_id), snapshot=self._snapshot,
        )
        self._tasks = [
            asyncio.create_task(self._forward(self._sub), name=f"view-forward-{self.conversation_id}"),
            asyncio.create_task(self._run(), name=f"view-apply-{self.conversation_id}"),
        ]

    async def close(self) -> None:
        if self._sub is not None:
            await self._fabric.unsubscribe(self._sub)
        tasks = list(self._tasks)
        if self._advance_task is not None:
            tasks.append(self._advance_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

    async def wait_synced(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._synced.wait(), timeout)

    async def drain(self) -> None:
        """Wait until every queued change has been applied."""
        await self._commands.join()

    # ------------------------------------------------------------ reads

    def messages(self) -> list[Message]:
        return sorted(self._messages.values(), key=lambda m: m.cursor)

    def pending(self) -> list[PendingItem]:
        return sorted(self._pending.values(), key=lambda p: p.message.created_at)

    # ------------------------------------------------------------ user actions

    async def send(self, content: str, *, attachment: Attachment | None = None) -> SendResult:
        client_msg_id = uuid.uuid4()
        stub = Message(
            id=client_msg_id,
            conversation_id=self.conversation_id,
            sender_id=self.user_id,
            client_msg_id=client_msg_id,
            content=content,
            attachment=attachment,
            created_at=self._clock.now(),
        )
        result = await self._sender.send(
            self.conversation_id,
            self.user_id,
            content,
            attachment=attachment,
            client_msg_id=client_msg_id,
        )
        self._commands.put_nowait(("local", (stub, result)))
        return result

    def mark_visible(self) -> None:
        self.visible = True
        self._commands.put_nowait(("visibility", True))

    def mark_hidden(self) -> None:
        self.visible = False

    # ------------------------------------------------------------ reconciliation

    async def _forward(self, sub: Subscription) -> None:
        async for event in sub:
            self._commands.put_nowait(("frame", event))

    async def _run(self) -> None:
        while True:
            command, payload = await self._commands.get()
            try:
                self._apply(command, payload)
            except Exception:
                logger.exception("Failed to apply %s in %s", command, self.conversation_id)
            finally:
                self._commands.task_done()

    def _apply(self, command: str, payload: Any) -> None:
        if command == "frame":
            self._apply_frame(payload)
        elif command == "local":
            stub, result = payload
            if result.message is not None:
                self._merge(result.message)
            else:
                self._pending[stub.client_msg_id] = PendingItem(stub, result.state)
        elif command == "advanced":
            for msg in payload:
                self._merge(msg)
        elif command == "visibility":
            self._maybe_advance()

    def _apply_frame(self, event: ChannelEvent) -> None:
        if event.type == FrameType.ERROR:
            self.degraded = True
            logger.warning("View %s is stale: %s", self.conversation_id, event.error)
            return
        if event.type == FrameType.SYNC:
            for item in event.items:
                self._merge(MessagePayload.model_validate(item).to_entity())
            self.degraded = False
            self._synced.set()
        elif event.kind in (EventKind.INSERT, EventKind.UPDATE):
            try:
                msg = MessagePayload.model_validate(event.data).to_entity()
            except PayloadError:
                logger.warning("Ignoring malformed message frame on %s", event.topic)
                return
            if msg.conversation_id != self.conversation_id:
                return
            self._merge(msg)
        self._maybe_advance()

    def _merge(self, msg: Message) -> None:
        existing = self._messages.get(msg.id)
        if existing is None or msg.status.rank > existing.status.rank:
            self._messages[msg.id] = msg
        if msg.sender_id == self.user_id:
            self._pending.pop(msg.client_msg_id, None)
        if self._cursor is None or msg.cursor > self._cursor:
            self._cursor = msg.cursor

    # ------------------------------------------------------------ status advance

    def _target(self) -> MessageStatus:
        return MessageStatus.READ if self.visible else MessageStatus.DELIVERED

    def _maybe_advance(self) -> None:
        target = self._target()
        behind = any(
            m.sender_id != self.user_id and m.status.can_advance_to(target)
            for m in self._messages.values()
        )
        if not behind:
            return
        if self._advance_task is not None and not self._advance_task.done():
            self._advance_again = True
            return
        self._advance_task = asyncio.create_task(self._advance(target))

    async def _advance(self, target: MessageStatus) -> None:
        while True:
            self._advance_again = False
            try:
                updated = await self._retry.run(
                    "advance_conversation", lambda: self._advance_once(target),
                )
            except TransientStoreError:
                logger.warning("Could not advance %s to %s", self.conversation_id, target)
                return
            if updated:
                self._commands.put_nowait(("advanced", updated))
            if not self._advance_again:
                return
            target = self._target()

    async def _advance_once(self, target: MessageStatus) -> list[Message]:
        async with self._uow_factory() as uow:
            return await ledger_service.advance_conversation(
                self.conversation_id, target, self.user_id, uow, clock=self._clock,
            )

    # ------------------------------------------------------------ catch-up

    def _catch_up_from(self) -> MessageCursor | None:
        """Earliest position whose status could still change, else the newest seen.

        Read messages are final, so everything before the oldest unread one
        can be skipped on resync.
        """
        open_cursors = [m.cursor for m in self._messages.values() if m.status != MessageStatus.READ]
        if open_cursors:
            floor = min(open_cursors)
            return MessageCursor(floor.created_at, floor.seq - 1)
        return self._cursor

    async def _snapshot(self) -> list[dict[str, Any]]:
        start = self._catch_up_from()

        async def _load() -> list[Message]:
            out: list[Message] = []
            after = start
            async with self._uow_factory() as uow:
                while True:
                    page = await ledger_service.list_messages(
                        self.conversation_id, uow, after=after, limit=_PAGE,
                    )
                    out.extend(page)
                    if len(page) < _PAGE:
                        return out
                    after = page[-1].cursor

        messages = await self._retry.run("list_messages", _load)
        return [dump(MessagePayload, m) for m in messages]
