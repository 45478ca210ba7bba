from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


def ordered_pair(user_a: UUID, user_b: UUID) -> tuple[UUID, UUID]:
    """Canonical storage order for an unordered participant pair."""
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


@dataclass(frozen=True, slots=True)
class Conversation:
    id: UUID
    user_a_id: UUID
    user_b_id: UUID
    created_at: datetime
    last_message_at: datetime | None = None
    is_archived: bool = False

    @property
    def participants(self) -> tuple[UUID, UUID]:
        return (self.user_a_id, self.user_b_id)

    def has_participant(self, user_id: UUID) -> bool:
        return user_id in self.participants

    def other_participant(self, user_id: UUID) -> UUID:
        if user_id == self.user_a_id:
            return self.user_b_id
        if user_id == self.user_b_id:
            return self.user_a_id
        raise ValueError(f"{user_id} is not a participant of {self.id}")
