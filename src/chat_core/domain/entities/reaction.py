from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Reaction:
    message_id: UUID
    conversation_id: UUID
    user_id: UUID
    emoji: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class ReactionGroup:
    emoji: str
    count: int
    user_ids: frozenset[UUID]
