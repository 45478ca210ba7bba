from __future__ import annotations

from chat_core.domain.entities.typing_state import TypingState
from chat_core.infrastructure.db.models.typing_indicator import TypingIndicatorModel


def model_to_entity(model: TypingIndicatorModel) -> TypingState:
    return TypingState(
        conversation_id=model.conversation_id,
        user_id=model.user_id,
        is_typing=model.is_typing,
        updated_at=model.updated_at,
    )
