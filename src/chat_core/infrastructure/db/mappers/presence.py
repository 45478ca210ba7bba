from __future__ import annotations

from chat_core.domain.entities.presence import PresenceState
from chat_core.infrastructure.db.models.presence import PresenceModel


def model_to_entity(model: PresenceModel) -> PresenceState:
    return PresenceState(
        user_id=model.user_id,
        is_online=model.is_online,
        last_seen_at=model.last_seen_at,
    )
