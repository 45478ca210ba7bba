from __future__ import annotations

from uuid import UUID

from chat_core.application.exceptions import ForbiddenError, NotFoundError
from chat_core.domain.entities.conversation import Conversation


def assert_participant(conversation: Conversation | None, user_id: UUID) -> Conversation:
    """Raise if conversation doesn't exist or user is not one of its two members."""
    if conversation is None:
        raise NotFoundError("Conversation not found")
    if not conversation.has_participant(user_id):
        raise ForbiddenError("Not a participant of this conversation")
    return conversation
