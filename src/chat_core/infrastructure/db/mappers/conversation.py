from __future__ import annotations

from chat_core.domain.entities.conversation import Conversation
from chat_core.infrastructure.db.models.conversation import ConversationModel


def model_to_entity(model: ConversationModel) -> Conversation:
    return Conversation(
        id=model.id,
        user_a_id=model.user_a_id,
        user_b_id=model.user_b_id,
        created_at=model.created_at,
        last_message_at=model.last_message_at,
        is_archived=model.is_archived,
    )


def entity_to_model(entity: Conversation) -> ConversationModel:
    return ConversationModel(
        id=entity.id,
        user_a_id=entity.user_a_id,
        user_b_id=entity.user_b_id,
        created_at=entity.created_at,
        last_message_at=entity.last_message_at,
        is_archived=entity.is_archived,
    )
