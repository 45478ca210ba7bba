from __future__ import annotations

import logging
import uuid
from datetime import datetime

from chat_core.application import topics
from chat_core.application.dto.events import OutboxEventDTO
from chat_core.application.dto.payloads import ConversationPayload, MessagePayload, dump
from chat_core.application.exceptions import ConflictError, NotFoundError, ValidationError
from chat_core.application.policies.permissions import assert_participant
from chat_core.application.ports.clock import Clock, SystemClock
from chat_core.application.uow import UnitOfWork
from chat_core.domain.entities.attachment import Attachment
from chat_core.domain.entities.conversation import Conversation, ordered_pair
from chat_core.domain.entities.message import Message
from chat_core.domain.value_objects.cursor import MessageCursor
from chat_core.domain.value_objects.enums import EventKind, MessageStatus

logger = logging.getLogger(__name__)

_system_clock = SystemClock()

DEFAULT_PAGE_SIZE = 50


async def create_conversation(
    user_a: uuid.UUID,
    user_b: uuid.UUID,
    uow: UnitOfWork,
    *,
    clock: Clock = _system_clock,
) -> tuple[Conversation, bool]:
    """Return the pair's conversation, creating it on first contact.

    Returns (conversation, created). Safe under concurrent calls for the same
    pair: the store's pair constraint picks one winner and every loser gets
    the winner back.
    """
    if user_a == user_b:
        raise ValidationError("Cannot start a conversation with yourself")

    existing = await uow.conversations.get_by_pair(user_a, user_b)
    if existing is not None:
        return existing, False

    low, high = ordered_pair(user_a, user_b)
    conversation = Conversation(
        id=uuid.uuid4(),
        user_a_id=low,
        user_b_id=high,
        created_at=clock.now(),
    )
    try:
        conversation = await uow.conversations_w.create(conversation)
    except ConflictError:
        await uow.rollback()
        winner = await uow.conversations.get_by_pair(user_a, user_b)
        if winner is None:
            raise
        logger.debug("Conversation race for %s/%s resolved to %s", low, high, winner.id)
        return winner, False

    data = dump(ConversationPayload, conversation)
    for user_id in conversation.participants:
        await _record(
            uow,
            OutboxEventDTO("chat.conversation_created", topics.inbox(user_id), EventKind.INSERT, data),
        )
    await uow.commit()
    return conversation, True


async def append_message(
    conversation_id: uuid.UUID,
    sender_id: uuid.UUID,
    content: str,
    uow: UnitOfWork,
    *,
    client_msg_id: uuid.UUID | None = None,
    attachment: Attachment | None = None,
    clock: Clock = _system_clock,
) -> tuple[Message, bool]:
    """Append a message idempotently.

    Returns (message, created). If a message with the same client_msg_id
    already exists the existing one is returned with created=False.
    """
    validate_content(content, attachment)
    conversation = await uow.conversations.get_by_id(conversation_id)
    conversation = assert_participant(conversation, sender_id)

    now = clock.now()
    msg = Message(
        id=uuid.uuid4(),
        conversation_id=conversation_id,
        sender_id=sender_id,
        client_msg_id=client_msg_id or uuid.uuid4(),
        content=content,
        attachment=attachment,
        status=MessageStatus.SENT,
        created_at=now,
    )

    msg, created = await uow.messages_w.create_if_not_exists(msg)

    if created:
        await uow.conversations_w.touch_last_message_at(conversation_id, msg.created_at)
        data = dump(MessagePayload, msg)
        recipient = conversation.other_participant(sender_id)
        await _record(
            uow,
            OutboxEventDTO("chat.message_created", topics.messages(conversation_id), EventKind.INSERT, data),
        )
        await _record(
            uow,
            OutboxEventDTO("chat.message_created", topics.inbox(recipient), EventKind.INSERT, data),
        )
        await uow.commit()

    return msg, created


def validate_content(content: str | None, attachment: Attachment | None) -> None:
    if (content is None or not content.strip()) and attachment is None:
        raise ValidationError("Message must have content or an attachment")


def parse_status(target: MessageStatus | str) -> MessageStatus:
    try:
        return MessageStatus(target)
    except ValueError as exc:
        raise ValidationError(f"Unknown message status: {target!r}") from exc


async def advance_status(
    message_id: uuid.UUID,
    target: MessageStatus | str,
    actor_id: uuid.UUID,
    uow: UnitOfWork,
    *,
    clock: Clock = _system_clock,
) -> Message | None:
    """Move a message forward through sent → delivered → read.

    Silently does nothing (returns None) when the actor sent the message,
    is not a participant, or the message already ranks at or above target.
    """
    status = parse_status(target)
    msg = await uow.messages.get_by_id(message_id)
    if msg is None:
        raise NotFoundError("Message not found")
    if msg.sender_id == actor_id or not msg.status.can_advance_to(status):
        return None
    conversation = await uow.conversations.get_by_id(msg.conversation_id)
    if conversation is None or not conversation.has_participant(actor_id):
        return None

    updated = await uow.messages_w.advance_status(message_id, status, clock.now())
    if updated is None:
        # Lost the compare-and-set to a concurrent advance.
        return None

    await _record_status_change(uow, updated)
    await uow.commit()
    return updated


async def advance_conversation(
    conversation_id: uuid.UUID,
    target: MessageStatus | str,
    actor_id: uuid.UUID,
    uow: UnitOfWork,
    *,
    clock: Clock = _system_clock,
) -> list[Message]:
    """Advance every inbound message of a conversation up to ``target``."""
    status = parse_status(target)
    if status == MessageStatus.SENT:
        return []
    conversation = await uow.conversations.get_by_id(conversation_id)
    assert_participant(conversation, actor_id)

    updated = await uow.messages_w.advance_conversation(
        conversation_id, actor_id, status, clock.now(),
    )
    if not updated:
        return []
    for msg in updated:
        await _record_status_change(uow, msg)
    await uow.commit()
    logger.debug(
        "Advanced %d messages in %s to %s for %s",
        len(updated), conversation_id, status, actor_id,
    )
    return updated


async def list_messages(
    conversation_id: uuid.UUID,
    uow: UnitOfWork,
    *,
    after: MessageCursor | str | None = None,
    since: datetime | None = None,
    limit: int | None = None,
) -> list[Message]:
    """Ledger order: ascending store seq. Restartable from any cursor."""
    if isinstance(after, str):
        try:
            after = MessageCursor.decode(after)
        except ValueError as exc:
            raise ValidationError("Malformed cursor") from exc
    return await uow.messages.list_messages(
        conversation_id, after=after, since=since, limit=limit or DEFAULT_PAGE_SIZE,
    )


async def list_conversations(
    user_id: uuid.UUID,
    uow: UnitOfWork,
    *,
    limit: int = 20,
) -> list[Conversation]:
    return await uow.conversations.list_for_user(user_id, limit=limit)


async def count_unread(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    uow: UnitOfWork,
) -> int:
    conversation = await uow.conversations.get_by_id(conversation_id)
    assert_participant(conversation, user_id)
    return await uow.messages.count_unread(conversation_id, user_id)


async def _record_status_change(uow: UnitOfWork, msg: Message) -> None:
    await _record(
        uow,
        OutboxEventDTO(
            "chat.message_status_changed",
            topics.messages(msg.conversation_id),
            EventKind.UPDATE,
            dump(MessagePayload, msg),
        ),
    )


async def _record(uow: UnitOfWork, event: OutboxEventDTO) -> None:
    await uow.outbox.add(event.event_type, event.as_payload())
