"""Message-triggered notifications, off the delivery-correctness path.

Each inbound message yields one NotificationEvent handled in its own task:
one persistence attempt and one presentation attempt, both best-effort.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict
from typing import Callable

from pydantic import ValidationError as PayloadError

from chat_core.application import topics
from chat_core.application.dto.payloads import MessagePayload
from chat_core.application.ports.clock import Clock, SystemClock
from chat_core.application.ports.notifier import NotificationPresenter, ProfileDirectory
from chat_core.application.uow import UoWFactory
from chat_core.domain.entities.message import Message
from chat_core.domain.entities.notification import NotificationEvent
from chat_core.domain.value_objects.enums import EventKind, FrameType, NotificationType
from chat_core.realtime.fabric import ChannelFabric, Subscription
from chat_core.services import notification_service

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New message"


def excerpt(msg: Message, length: int) -> str:
    if msg.attachment is not None and not msg.content.strip():
        return f"Sent an attachment: {msg.attachment.name}"
    text = msg.content.strip()
    if len(text) <= length:
        return text
    return text[: max(length - 1, 0)].rstrip() + "…"


class NotificationDispatcher:
    def __init__(
        self,
        fabric: ChannelFabric,
        user_id: uuid.UUID,
        uow_factory: UoWFactory | None,
        *,
        presenter: NotificationPresenter | None = None,
        profiles: ProfileDirectory | None = None,
        clock: Clock | None = None,
        excerpt_length: int = 100,
        present_enabled: bool = True,
        is_foreground: Callable[[uuid.UUID], bool] | None = None,
        dedupe_size: int = 256,
    ) -> None:
        self.user_id = user_id
        self._fabric = fabric
        self._uow_factory = uow_factory
        self._presenter = presenter
        self._profiles = profiles
        self._clock = clock or SystemClock()
        self._excerpt_length = excerpt_length
        self._present_enabled = present_enabled
        self._is_foreground = is_foreground or (lambda _cid: False)
        self._dedupe_size = dedupe_size
        self._seen: OrderedDict[uuid.UUID, None] = OrderedDict()
        self._sub: Subscription | None = None
        self._reader: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    async def start(self) -> None:
        self._sub = await self._fabric.subscribe(topics.inbox(self.user_id))
        self._reader = asyncio.create_task(self._read(self._sub), name=f"notify-{self.user_id}")

    async def close(self) -> None:
        if self._sub is not None:
            await self._fabric.unsubscribe(self._sub)
            self._sub = None
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        for task in list(self._tasks):
            task.cancel()

    async def drain(self) -> None:
        """Wait for in-flight notification tasks."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _read(self, sub: Subscription) -> None:
        while True:
            event = await sub.receive()
            if event is None:
                return
            if event.type != FrameType.EVENT or event.kind != EventKind.INSERT:
                continue
            try:
                msg = MessagePayload.model_validate(event.data).to_entity()
            except PayloadError:
                # Conversation-created frames share the inbox topic.
                continue
            self.handle(msg)

    def handle(self, msg: Message) -> asyncio.Task[None] | None:
        if msg.sender_id == self.user_id or self._already_seen(msg.id):
            return None
        task = asyncio.create_task(self._dispatch(msg))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _already_seen(self, message_id: uuid.UUID) -> bool:
        if message_id in self._seen:
            return True
        self._seen[message_id] = None
        if len(self._seen) > self._dedupe_size:
            self._seen.popitem(last=False)
        return False

    async def build_event(self, msg: Message) -> NotificationEvent:
        title = None
        if self._profiles is not None:
            try:
                title = await self._profiles.display_name(msg.sender_id)
            except Exception:
                logger.warning("Profile lookup for %s failed", msg.sender_id, exc_info=True)
        return NotificationEvent(
            id=uuid.uuid4(),
            recipient_id=self.user_id,
            title=title or DEFAULT_TITLE,
            body=excerpt(msg, self._excerpt_length),
            type=NotificationType.MESSAGE,
            created_at=self._clock.now(),
            data={
                "conversation_id": str(msg.conversation_id),
                "message_id": str(msg.id),
                "sender_id": str(msg.sender_id),
            },
        )

    async def _dispatch(self, msg: Message) -> None:
        try:
            event = await self.build_event(msg)
        except Exception:
            logger.exception("Notification for message %s could not be built", msg.id)
            return

        if self._uow_factory is not None:
            try:
                async with self._uow_factory() as uow:
                    await notification_service.record(event, uow)
            except Exception:
                logger.exception("Notification %s for message %s not persisted", event.id, msg.id)

        if (
            self._presenter is not None
            and self._present_enabled
            and not self._is_foreground(msg.conversation_id)
        ):
            try:
                await self._presenter.present(event)
            except Exception:
                logger.exception("Notification %s for message %s not presented", event.id, msg.id)
