from __future__ import annotations

from chat_core.domain.entities.reaction import Reaction
from chat_core.infrastructure.db.models.reaction import ReactionModel


def model_to_entity(model: ReactionModel) -> Reaction:
    return Reaction(
        message_id=model.message_id,
        conversation_id=model.conversation_id,
        user_id=model.user_id,
        emoji=model.emoji,
        created_at=model.created_at,
    )
