from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Self

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chat_core.application.exceptions import TransientStoreError
from chat_core.infrastructure.db.repositories.conversation import (
    ConversationReaderRepo,
    ConversationWriterRepo,
)
from chat_core.infrastructure.db.repositories.message import (
    MessageReaderRepo,
    MessageWriterRepo,
)
from chat_core.infrastructure.db.repositories.notification import (
    NotificationReaderRepo,
    NotificationWriterRepo,
)
from chat_core.infrastructure.db.repositories.outbox import OutboxWriterRepo
from chat_core.infrastructure.db.repositories.presence import (
    PresenceReaderRepo,
    PresenceWriterRepo,
)
from chat_core.infrastructure.db.repositories.reaction import (
    ReactionReaderRepo,
    ReactionWriterRepo,
)
from chat_core.infrastructure.db.repositories.typing_indicator import (
    TypingReaderRepo,
    TypingWriterRepo,
)

logger = logging.getLogger(__name__)


class SqlAlchemyUoW:
    """Concrete Unit-of-Work backed by a single AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.conversations = ConversationReaderRepo(session)
        self.conversations_w = ConversationWriterRepo(session)
        self.messages = MessageReaderRepo(session)
        self.messages_w = MessageWriterRepo(session)
        self.reactions = ReactionReaderRepo(session)
        self.reactions_w = ReactionWriterRepo(session)
        self.presence = PresenceReaderRepo(session)
        self.presence_w = PresenceWriterRepo(session)
        self.typing = TypingReaderRepo(session)
        self.typing_w = TypingWriterRepo(session)
        self.notifications = NotificationReaderRepo(session)
        self.notifications_w = NotificationWriterRepo(session)
        self.outbox = OutboxWriterRepo(session)

    async def flush(self) -> None:
        await self._session.flush()

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            await self.rollback()


def _is_transient(exc: DBAPIError) -> bool:
    return isinstance(exc, (OperationalError, InterfaceError)) or exc.connection_invalidated


def uow_factory(session_maker: async_sessionmaker[AsyncSession]):
    """Build a UoWFactory: each call opens a session-scoped unit of work.

    Connection-level failures surface as TransientStoreError so callers can
    retry them; constraint and programming errors propagate unchanged.
    """

    @asynccontextmanager
    async def unit_of_work() -> AsyncIterator[SqlAlchemyUoW]:
        try:
            async with session_maker() as session:
                async with SqlAlchemyUoW(session) as uow:
                    yield uow
        except DBAPIError as exc:
            if not _is_transient(exc):
                raise
            logger.warning("Transient store error: %s", exc.orig)
            raise TransientStoreError(str(exc.orig)) from exc
        except (ConnectionError, OSError) as exc:
            raise TransientStoreError(str(exc)) from exc

    return unit_of_work
