"""Pure reaction-set arithmetic shared by the store service and client views."""
from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from chat_core.domain.entities.reaction import Reaction, ReactionGroup


def group_reactions(reactions: Iterable[Reaction]) -> list[ReactionGroup]:
    """Group by emoji, ordered by each emoji's first reaction.

    Always recomputed from the full set; callers never patch groups in place.
    """
    users: dict[str, set[UUID]] = {}
    for r in sorted(reactions, key=lambda r: (r.created_at, str(r.user_id))):
        users.setdefault(r.emoji, set()).add(r.user_id)
    return [
        ReactionGroup(emoji=emoji, count=len(ids), user_ids=frozenset(ids))
        for emoji, ids in users.items()
    ]


def resolve_toggle(current: Reaction | None, emoji: str) -> tuple[str, str | None]:
    """Decide what setting ``emoji`` does on top of ``current``.

    Returns (action, net_emoji); action is "insert", "replace" or "remove".
    """
    if current is None:
        return "insert", emoji
    if current.emoji == emoji:
        return "remove", None
    return "replace", emoji
