"""Fabric topic names."""
from __future__ import annotations

from uuid import UUID

PRESENCE = "presence"


def messages(conversation_id: UUID) -> str:
    return f"messages:{conversation_id}"


def typing(conversation_id: UUID) -> str:
    return f"typing:{conversation_id}"


def reactions(conversation_id: UUID) -> str:
    return f"reactions:{conversation_id}"


def inbox(user_id: UUID) -> str:
    return f"inbox:{user_id}"


def notifications(user_id: UUID) -> str:
    return f"notifications:{user_id}"
