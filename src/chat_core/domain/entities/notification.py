from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID


@dataclass(frozen=True, slots=True)
class NotificationEvent:
    """Denormalized, render-ready notice about an inbound message."""

    id: UUID
    recipient_id: UUID
    title: str
    body: str
    type: str
    created_at: datetime
    data: dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
