"""Composition root: wires a ChatSession from settings."""
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from chat_core.application.ports.notifier import NotificationPresenter, ProfileDirectory
from chat_core.application.retry import RetryPolicy
from chat_core.config import Settings, settings as default_settings
from chat_core.infrastructure.bus.factory import build_fabric
from chat_core.infrastructure.bus.memory import InMemoryBroker
from chat_core.infrastructure.db.session import build_engine, build_session_maker
from chat_core.infrastructure.db.uow import uow_factory
from chat_core.infrastructure.local.pending_outbox import SqlitePendingOutbox
from chat_core.infrastructure.notify.presenters import FabricToastPresenter
from chat_core.realtime.session import ChatSession

logger = logging.getLogger(__name__)


def retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.LEDGER_RETRY_ATTEMPTS,
        base_delay=settings.LEDGER_RETRY_BASE_DELAY,
        max_delay=settings.LEDGER_RETRY_MAX_DELAY,
    )


@asynccontextmanager
async def chat_session(
    user_id: uuid.UUID,
    *,
    settings: Settings = default_settings,
    presenter: NotificationPresenter | None = None,
    profiles: ProfileDirectory | None = None,
    broker: InMemoryBroker | None = None,
) -> AsyncIterator[ChatSession]:
    """Start a session for ``user_id`` and tear everything down on exit."""
    engine = build_engine(settings)
    outbox = SqlitePendingOutbox(settings.PENDING_OUTBOX_URL, capacity=settings.PENDING_OUTBOX_CAPACITY)
    await outbox.init()
    fabric = build_fabric(settings, broker=broker)

    session = ChatSession(
        user_id,
        fabric,
        uow_factory(build_session_maker(engine)),
        outbox,
        presenter=presenter or FabricToastPresenter(fabric),
        profiles=profiles,
        retry=retry_policy(settings),
        typing_ttl=settings.TYPING_TTL_SECONDS,
        typing_margin=settings.TYPING_STALE_MARGIN_SECONDS,
        flush_interval=settings.PENDING_OUTBOX_FLUSH_INTERVAL,
        excerpt_length=settings.NOTIFICATION_EXCERPT_LENGTH,
        present_notifications=settings.NOTIFICATIONS_PRESENT_ENABLED,
    )
    try:
        await session.start(connect_timeout=settings.FABRIC_CONNECT_TIMEOUT)
        yield session
    finally:
        await session.close()
        await outbox.close()
        await engine.dispose()
        logger.info("Session resources for %s released", user_id)
