from __future__ import annotations

import logging

from chat_core.application import topics
from chat_core.application.ports.bus import EventPublisher
from chat_core.domain.entities.notification import NotificationEvent
from chat_core.domain.value_objects.enums import EventKind

logger = logging.getLogger(__name__)


class FabricToastPresenter:
    """In-app toast: publishes the rendered notice on ``notifications:{user}``."""

    def __init__(self, publisher: EventPublisher) -> None:
        self._publisher = publisher

    async def present(self, event: NotificationEvent) -> None:
        await self._publisher.publish(
            topics.notifications(event.recipient_id),
            EventKind.INSERT,
            {
                "id": str(event.id),
                "recipient_id": str(event.recipient_id),
                "title": event.title,
                "body": event.body,
                "type": str(event.type),
                "data": event.data,
                "created_at": event.created_at.isoformat(),
            },
        )


class LoggingPresenter:
    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    async def present(self, event: NotificationEvent) -> None:
        logger.log(self._level, "Notify %s: %s: %s", event.recipient_id, event.title, event.body)
