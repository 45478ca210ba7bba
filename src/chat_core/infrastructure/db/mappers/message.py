from __future__ import annotations

from typing import Any

from chat_core.domain.entities.attachment import Attachment
from chat_core.domain.entities.message import Message
from chat_core.domain.value_objects.enums import MessageStatus
from chat_core.infrastructure.db.models.message import MessageModel


def attachment_to_json(attachment: Attachment | None) -> dict[str, Any] | None:
    if attachment is None:
        return None
    return {
        "name": attachment.name,
        "mime_type": attachment.mime_type,
        "size": attachment.size,
        "url": attachment.url,
    }


def attachment_from_json(raw: dict[str, Any] | None) -> Attachment | None:
    if not raw:
        return None
    return Attachment(
        name=raw["name"],
        mime_type=raw["mime_type"],
        size=raw["size"],
        url=raw["url"],
    )


def model_to_entity(model: MessageModel) -> Message:
    return Message(
        id=model.id,
        seq=model.seq,
        conversation_id=model.conversation_id,
        sender_id=model.sender_id,
        client_msg_id=model.client_msg_id,
        content=model.content,
        attachment=attachment_from_json(model.attachment),
        status=MessageStatus(model.status),
        created_at=model.created_at,
        delivered_at=model.delivered_at,
        read_at=model.read_at,
    )


def entity_to_values(entity: Message) -> dict[str, Any]:
    """Insert values; ``seq`` and ``created_at`` are left to the store."""
    return {
        "id": entity.id,
        "conversation_id": entity.conversation_id,
        "sender_id": entity.sender_id,
        "client_msg_id": entity.client_msg_id,
        "content": entity.content,
        "attachment": attachment_to_json(entity.attachment),
        "status": entity.status.value,
    }
