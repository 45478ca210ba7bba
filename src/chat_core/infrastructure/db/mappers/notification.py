from __future__ import annotations

from chat_core.domain.entities.notification import NotificationEvent
from chat_core.infrastructure.db.models.notification import NotificationModel


def model_to_entity(model: NotificationModel) -> NotificationEvent:
    return NotificationEvent(
        id=model.id,
        recipient_id=model.recipient_id,
        title=model.title,
        body=model.body,
        type=model.type,
        data=dict(model.data or {}),
        created_at=model.created_at,
        is_read=model.is_read,
    )


def entity_to_model(entity: NotificationEvent) -> NotificationModel:
    return NotificationModel(
        id=entity.id,
        recipient_id=entity.recipient_id,
        title=entity.title,
        body=entity.body,
        type=str(entity.type),
        data=entity.data,
        created_at=entity.created_at,
        is_read=entity.is_read,
    )
