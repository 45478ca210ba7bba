from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Callable, Protocol

from chat_core.application.repositories.conversation import (
    ConversationReader,
    ConversationWriter,
)
from chat_core.application.repositories.message import MessageReader, MessageWriter
from chat_core.application.repositories.notification import (
    NotificationReader,
    NotificationWriter,
)
from chat_core.application.repositories.outbox import OutboxWriter
from chat_core.application.repositories.presence import PresenceReader, PresenceWriter
from chat_core.application.repositories.reaction import ReactionReader, ReactionWriter
from chat_core.application.repositories.typing_state import TypingReader, TypingWriter


class UnitOfWork(Protocol):
    conversations: ConversationReader
    conversations_w: ConversationWriter
    messages: MessageReader
    messages_w: MessageWriter
    reactions: ReactionReader
    reactions_w: ReactionWriter
    presence: PresenceReader
    presence_w: PresenceWriter
    typing: TypingReader
    typing_w: TypingWriter
    notifications: NotificationReader
    notifications_w: NotificationWriter
    outbox: OutboxWriter

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...
    async def flush(self) -> None: ...


# Opens a fresh unit of work per operation: ``async with uow_factory() as uow``.
UoWFactory = Callable[[], AbstractAsyncContextManager[UnitOfWork]]
