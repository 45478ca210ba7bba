from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class PresenceState:
    user_id: UUID
    is_online: bool
    last_seen_at: datetime | None
