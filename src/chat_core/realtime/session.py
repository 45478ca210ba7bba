from __future__ import annotations

import asyncio
import logging
import uuid

from chat_core.application.dto.message import SendResult
from chat_core.application.ports.clock import Clock, SystemClock
from chat_core.application.ports.notifier import NotificationPresenter, ProfileDirectory
from chat_core.application.ports.outbox import PendingOutbox
from chat_core.application.retry import RetryPolicy
from chat_core.application.uow import UoWFactory
from chat_core.domain.entities.attachment import Attachment
from chat_core.realtime.conversation_view import ConversationView
from chat_core.realtime.fabric import ChannelFabric
from chat_core.realtime.notifications import NotificationDispatcher
from chat_core.realtime.presence import PresenceTracker
from chat_core.realtime.reactions import ReactionAggregator
from chat_core.realtime.sender import MessageSender
from chat_core.realtime.typing import TypingSignalBus
from chat_core.services import ledger_service

logger = logging.getLogger(__name__)


class ChatSession:
    """Everything one signed-in user needs, wired to one fabric.

    Owns its components and tears them down in ``close()``; nothing here is
    process-global.
    """

    def __init__(
        self,
        user_id: uuid.UUID,
        fabric: ChannelFabric,
        uow_factory: UoWFactory,
        pending_outbox: PendingOutbox,
        *,
        presenter: NotificationPresenter | None = None,
        profiles: ProfileDirectory | None = None,
        retry: RetryPolicy | None = None,
        clock: Clock | None = None,
        typing_ttl: float = 3.0,
        typing_margin: float = 1.0,
        flush_interval: float = 5.0,
        excerpt_length: int = 100,
        present_notifications: bool = True,
    ) -> None:
        self.user_id = user_id
        self.fabric = fabric
        self._uow_factory = uow_factory
        self._retry = retry or RetryPolicy()
        self._clock = clock or SystemClock()
        self._flush_interval = flush_interval
        self.sender = MessageSender(uow_factory, pending_outbox, retry=self._retry, clock=self._clock)
        self.presence = PresenceTracker(fabric, uow_factory, retry=self._retry, clock=self._clock)
        self.typing = TypingSignalBus(
            fabric, user_id, uow_factory, ttl=typing_ttl, margin=typing_margin, clock=self._clock,
        )
        self.reactions = ReactionAggregator(
            fabric, user_id, uow_factory, retry=self._retry, clock=self._clock,
        )
        self.notifications = NotificationDispatcher(
            fabric,
            user_id,
            uow_factory,
            presenter=presenter,
            profiles=profiles,
            clock=self._clock,
            excerpt_length=excerpt_length,
            present_enabled=present_notifications,
            is_foreground=self._is_foreground,
        )
        self._views: dict[uuid.UUID, ConversationView] = {}
        self._stop = asyncio.Event()
        self._flusher: asyncio.Task[None] | None = None

    async def start(self, *, connect_timeout: float | None = None) -> None:
        await self.fabric.start()
        await self.presence.start()
        await self.notifications.start()
        await self.fabric.wait_connected(connect_timeout)
        await self.presence.mark_online(self.user_id)
        self._flusher = asyncio.create_task(
            self.sender.run_flusher(self._flush_interval, self._stop), name=f"flusher-{self.user_id}",
        )
        logger.info("Chat session started for %s", self.user_id)

    async def open_conversation(self, other_user_id: uuid.UUID) -> ConversationView:
        async def _open():
            async with self._uow_factory() as uow:
                conversation, _created = await ledger_service.create_conversation(
                    self.user_id, other_user_id, uow, clock=self._clock,
                )
            return conversation

        conversation = await self._retry.run("create_conversation", _open)
        view = self._views.get(conversation.id)
        if view is not None:
            return view
        view = ConversationView(
            conversation,
            self.user_id,
            self.fabric,
            self._uow_factory,
            self.sender,
            retry=self._retry,
            clock=self._clock,
        )
        self._views[conversation.id] = view
        await view.start()
        await self.typing.watch(conversation.id)
        await self.reactions.watch(conversation.id)
        return view

    async def close_conversation(self, conversation_id: uuid.UUID) -> None:
        view = self._views.pop(conversation_id, None)
        if view is None:
            return
        await self.typing.clear_typing(conversation_id)
        await self.typing.unwatch(conversation_id)
        await self.reactions.unwatch(conversation_id)
        await view.close()

    def view(self, conversation_id: uuid.UUID) -> ConversationView | None:
        return self._views.get(conversation_id)

    async def send(
        self,
        conversation_id: uuid.UUID,
        content: str,
        attachment: Attachment | None = None,
    ) -> SendResult:
        view = self._views.get(conversation_id)
        if view is not None:
            result = await view.send(content, attachment=attachment)
        else:
            result = await self.sender.send(conversation_id, self.user_id, content, attachment=attachment)
        await self.typing.clear_typing(conversation_id)
        return result

    async def close(self) -> None:
        self._stop.set()
        if self._flusher is not None:
            try:
                await self._flusher
            except Exception:
                logger.exception("Pending outbox flusher ended with an error")
            self._flusher = None
        for conversation_id in list(self._views):
            await self.close_conversation(conversation_id)
        await self.typing.close()
        await self.reactions.close()
        await self.notifications.close()
        await self.presence.mark_offline(self.user_id)
        await self.presence.close()
        await self.fabric.close()
        logger.info("Chat session closed for %s", self.user_id)

    def _is_foreground(self, conversation_id: uuid.UUID) -> bool:
        view = self._views.get(conversation_id)
        return view is not None and view.visible
