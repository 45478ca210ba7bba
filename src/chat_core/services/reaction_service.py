from __future__ import annotations

import uuid

from chat_core.application import topics
from chat_core.application.dto.events import OutboxEventDTO
from chat_core.application.dto.payloads import ReactionPayload, dump
from chat_core.application.exceptions import NotFoundError, ValidationError
from chat_core.application.policies.permissions import assert_participant
from chat_core.application.ports.clock import Clock, SystemClock
from chat_core.application.uow import UnitOfWork
from chat_core.domain.entities.reaction import Reaction, ReactionGroup
from chat_core.domain.reactions import group_reactions, resolve_toggle
from chat_core.domain.value_objects.enums import EventKind

_system_clock = SystemClock()


async def set_reaction(
    message_id: uuid.UUID,
    user_id: uuid.UUID,
    emoji: str,
    uow: UnitOfWork,
    *,
    clock: Clock = _system_clock,
) -> Reaction | None:
    """Toggle, replace or insert the user's single reaction on a message.

    Returns the net reaction, or None when the call toggled it off. Exactly
    one reaction-changed event is recorded in every case.
    """
    emoji = (emoji or "").strip()
    if not emoji:
        raise ValidationError("Emoji must not be empty")

    msg = await uow.messages.get_by_id(message_id)
    if msg is None:
        raise NotFoundError("Message not found")
    conversation = await uow.conversations.get_by_id(msg.conversation_id)
    assert_participant(conversation, user_id)

    current = await uow.reactions.get(message_id, user_id)
    action, net_emoji = resolve_toggle(current, emoji)
    now = clock.now()

    if action == "remove":
        await uow.reactions_w.delete(message_id, user_id)
        result = None
    else:
        result = Reaction(
            message_id=message_id,
            conversation_id=msg.conversation_id,
            user_id=user_id,
            emoji=emoji,
            created_at=now,
        )
        await uow.reactions_w.upsert(result)

    payload = ReactionPayload(
        message_id=message_id,
        conversation_id=msg.conversation_id,
        user_id=user_id,
        emoji=net_emoji,
        created_at=now,
    )
    event = OutboxEventDTO(
        "chat.reaction_changed",
        topics.reactions(msg.conversation_id),
        EventKind.UPDATE,
        payload.model_dump(mode="json"),
    )
    await uow.outbox.add(event.event_type, event.as_payload())
    await uow.commit()
    return result


async def list_reactions(
    message_id: uuid.UUID,
    uow: UnitOfWork,
) -> list[ReactionGroup]:
    return group_reactions(await uow.reactions.list_for_message(message_id))


async def conversation_snapshot(
    conversation_id: uuid.UUID,
    uow: UnitOfWork,
) -> list[dict]:
    """Every reaction row of a conversation, as sync items."""
    rows = await uow.reactions.list_for_conversation(conversation_id)
    return [dump(ReactionPayload, r) for r in rows]
