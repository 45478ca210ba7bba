"""Wire shapes of fan-out data carried in channel envelopes."""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from chat_core.domain.entities.attachment import Attachment
from chat_core.domain.entities.message import Message
from chat_core.domain.entities.presence import PresenceState
from chat_core.domain.entities.reaction import Reaction
from chat_core.domain.entities.typing_state import TypingState
from chat_core.domain.value_objects.enums import MessageStatus


class AttachmentPayload(BaseModel):
    name: str
    mime_type: str
    size: int
    url: str

    model_config = ConfigDict(from_attributes=True)

    def to_entity(self) -> Attachment:
        return Attachment(name=self.name, mime_type=self.mime_type, size=self.size, url=self.url)


class MessagePayload(BaseModel):
    id: UUID
    seq: int
    conversation_id: UUID
    sender_id: UUID
    client_msg_id: UUID
    content: str
    attachment: AttachmentPayload | None = None
    status: MessageStatus
    created_at: datetime
    delivered_at: datetime | None = None
    read_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    def to_entity(self) -> Message:
        return Message(
            id=self.id,
            seq=self.seq,
            conversation_id=self.conversation_id,
            sender_id=self.sender_id,
            client_msg_id=self.client_msg_id,
            content=self.content,
            attachment=self.attachment.to_entity() if self.attachment else None,
            status=self.status,
            created_at=self.created_at,
            delivered_at=self.delivered_at,
            read_at=self.read_at,
        )


class ConversationPayload(BaseModel):
    id: UUID
    user_a_id: UUID
    user_b_id: UUID
    created_at: datetime
    last_message_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ReactionPayload(BaseModel):
    """Net state for one (message, user) pair; ``emoji`` is None once removed."""

    message_id: UUID
    conversation_id: UUID
    user_id: UUID
    emoji: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def to_entity(self) -> Reaction | None:
        if self.emoji is None:
            return None
        return Reaction(
            message_id=self.message_id,
            conversation_id=self.conversation_id,
            user_id=self.user_id,
            emoji=self.emoji,
            created_at=self.created_at,
        )


class PresencePayload(BaseModel):
    user_id: UUID
    is_online: bool
    last_seen_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    def to_entity(self) -> PresenceState:
        return PresenceState(
            user_id=self.user_id, is_online=self.is_online, last_seen_at=self.last_seen_at,
        )


class TypingPayload(BaseModel):
    conversation_id: UUID
    user_id: UUID
    is_typing: bool
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def to_entity(self) -> TypingState:
        return TypingState(
            conversation_id=self.conversation_id,
            user_id=self.user_id,
            is_typing=self.is_typing,
            updated_at=self.updated_at,
        )


def dump(model: type[BaseModel], obj: object) -> dict:
    """Entity → JSON-safe dict through the matching payload model."""
    return model.model_validate(obj).model_dump(mode="json")
