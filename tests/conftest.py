"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import UUID

import pytest
import pytest_asyncio

from chat_core.application.exceptions import ConflictError, OutboxFullError, TransientStoreError
from chat_core.application.repositories.outbox import OutboxRecord
from chat_core.application.retry import RetryPolicy
from chat_core.domain.entities.conversation import Conversation, ordered_pair
from chat_core.domain.entities.message import Message
from chat_core.domain.entities.notification import NotificationEvent
from chat_core.domain.entities.pending_send import PendingSend
from chat_core.domain.entities.presence import PresenceState
from chat_core.domain.entities.reaction import Reaction
from chat_core.domain.entities.typing_state import TypingState
from chat_core.domain.value_objects.cursor import MessageCursor
from chat_core.domain.value_objects.enums import MessageStatus
from chat_core.infrastructure.bus.memory import InMemoryBroker
from chat_core.realtime.fabric import ChannelFabric
from chat_core.workers.outbox_worker import process_batch

FAST_RETRY = RetryPolicy(max_attempts=2, base_delay=0.001, max_delay=0.002)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def alice() -> UUID:
    return uuid.UUID("00000000-0000-4000-8000-00000000000a")


@pytest.fixture
def bob() -> UUID:
    return uuid.UUID("00000000-0000-4000-8000-00000000000b")


def make_conversation(user_a: UUID, user_b: UUID, *, created_at: datetime = T0) -> Conversation:
    low, high = ordered_pair(user_a, user_b)
    return Conversation(id=uuid.uuid4(), user_a_id=low, user_b_id=high, created_at=created_at)


def make_message(
    conversation_id: UUID,
    sender_id: UUID,
    *,
    content: str = "hello",
    seq: int = 1,
    status: MessageStatus = MessageStatus.SENT,
    created_at: datetime = T0,
) -> Message:
    return Message(
        id=uuid.uuid4(),
        seq=seq,
        conversation_id=conversation_id,
        sender_id=sender_id,
        client_msg_id=uuid.uuid4(),
        content=content,
        status=status,
        created_at=created_at,
    )


async def eventually(check: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until ``check()`` holds, yielding to the loop in between."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not check():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


# ---------------------------------------------------------------- store fakes


@dataclass
class FakeStore:
    """Shared in-memory state; every FakeUoW opened on it sees the same rows."""

    conversations: dict[UUID, Conversation] = field(default_factory=dict)
    messages: list[Message] = field(default_factory=list)
    reactions: dict[tuple[UUID, UUID], Reaction] = field(default_factory=dict)
    presence: dict[UUID, PresenceState] = field(default_factory=dict)
    typing: dict[tuple[UUID, UUID], TypingState] = field(default_factory=dict)
    notifications: list[NotificationEvent] = field(default_factory=list)
    outbox: list[OutboxRecord] = field(default_factory=list)
    outbox_status: dict[int, str] = field(default_factory=dict)
    offline: bool = False
    failures_left: int = 0
    opened: int = 0
    _seq: int = 0

    def next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def uow_factory(self):
        @asynccontextmanager
        async def _open():
            self.opened += 1
            if self.offline:
                raise TransientStoreError("store unreachable")
            if self.failures_left > 0:
                self.failures_left -= 1
                raise TransientStoreError("store hiccup")
            yield FakeUoW(store=self)

        return _open

    def outbox_payloads(self, event_type: str | None = None) -> list[dict[str, Any]]:
        return [r.payload for r in self.outbox if event_type is None or r.event_type == event_type]


@dataclass
class FakeConversationReader:
    _store: FakeStore

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        return self._store.conversations.get(conversation_id)

    async def get_by_pair(self, user_a: UUID, user_b: UUID) -> Conversation | None:
        low, high = ordered_pair(user_a, user_b)
        found = next(
            (c for c in self._store.conversations.values() if (c.user_a_id, c.user_b_id) == (low, high)),
            None,
        )
        # Yield after reading so concurrent callers interleave like real round-trips.
        await asyncio.sleep(0)
        return found

    async def list_for_user(self, user_id: UUID, *, limit: int = 20) -> list[Conversation]:
        convs = [c for c in self._store.conversations.values() if c.has_participant(user_id)]
        convs.sort(key=lambda c: c.last_message_at or c.created_at, reverse=True)
        return convs[:limit]


@dataclass
class FakeConversationWriter:
    _store: FakeStore

    async def create(self, conversation: Conversation) -> Conversation:
        pair = (conversation.user_a_id, conversation.user_b_id)
        if any((c.user_a_id, c.user_b_id) == pair for c in self._store.conversations.values()):
            raise ConflictError("uq_conversation_pair")
        self._store.conversations[conversation.id] = conversation
        return conversation

    async def touch_last_message_at(self, conversation_id: UUID, ts: datetime) -> None:
        conv = self._store.conversations[conversation_id]
        self._store.conversations[conversation_id] = replace(conv, last_message_at=ts)


@dataclass
class FakeMessageReader:
    _store: FakeStore

    async def get_by_id(self, message_id: UUID) -> Message | None:
        return next((m for m in self._store.messages if m.id == message_id), None)

    async def list_messages(
        self,
        conversation_id: UUID,
        *,
        after: MessageCursor | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[Message]:
        rows = sorted(
            (m for m in self._store.messages if m.conversation_id == conversation_id),
            key=lambda m: m.cursor,
        )
        if after is not None:
            rows = [m for m in rows if m.cursor > after]
        if since is not None:
            rows = [m for m in rows if m.created_at >= since]
        return rows[:limit]

    async def count_unread(self, conversation_id: UUID, user_id: UUID) -> int:
        return sum(
            1
            for m in self._store.messages
            if m.conversation_id == conversation_id
            and m.sender_id != user_id
            and m.status != MessageStatus.READ
        )


@dataclass
class FakeMessageWriter:
    _store: FakeStore

    async def create_if_not_exists(self, message: Message) -> tuple[Message, bool]:
        existing = await self.get_by_client_msg_id(
            message.conversation_id, message.sender_id, message.client_msg_id,
        )
        if existing is not None:
            return existing, False
        stored = replace(message, seq=self._store.next_seq())
        self._store.messages.append(stored)
        return stored, True

    async def get_by_client_msg_id(
        self, conversation_id: UUID, sender_id: UUID, client_msg_id: UUID,
    ) -> Message | None:
        for m in self._store.messages:
            if (
                m.conversation_id == conversation_id
                and m.sender_id == sender_id
                and m.client_msg_id == client_msg_id
            ):
                return m
        return None

    async def advance_status(self, message_id: UUID, target: MessageStatus, at: datetime) -> Message | None:
        for i, m in enumerate(self._store.messages):
            if m.id == message_id:
                if not m.status.can_advance_to(target):
                    return None
                self._store.messages[i] = m.advanced(target, at)
                return self._store.messages[i]
        return None

    async def advance_conversation(
        self, conversation_id: UUID, recipient_id: UUID, target: MessageStatus, at: datetime,
    ) -> list[Message]:
        updated = []
        for i, m in enumerate(self._store.messages):
            if (
                m.conversation_id == conversation_id
                and m.sender_id != recipient_id
                and m.status.can_advance_to(target)
            ):
                self._store.messages[i] = m.advanced(target, at)
                updated.append(self._store.messages[i])
        return sorted(updated, key=lambda m: m.cursor)


@dataclass
class FakeReactionReader:
    _store: FakeStore

    async def get(self, message_id: UUID, user_id: UUID) -> Reaction | None:
        return self._store.reactions.get((message_id, user_id))

    async def list_for_message(self, message_id: UUID) -> list[Reaction]:
        return [r for r in self._store.reactions.values() if r.message_id == message_id]

    async def list_for_conversation(self, conversation_id: UUID) -> list[Reaction]:
        return [r for r in self._store.reactions.values() if r.conversation_id == conversation_id]


@dataclass
class FakeReactionWriter:
    _store: FakeStore

    async def upsert(self, reaction: Reaction) -> None:
        self._store.reactions[(reaction.message_id, reaction.user_id)] = reaction

    async def delete(self, message_id: UUID, user_id: UUID) -> None:
        self._store.reactions.pop((message_id, user_id), None)


@dataclass
class FakePresenceReader:
    _store: FakeStore

    async def get(self, user_id: UUID) -> PresenceState | None:
        return self._store.presence.get(user_id)

    async def list_all(self) -> list[PresenceState]:
        return list(self._store.presence.values())


@dataclass
class FakePresenceWriter:
    _store: FakeStore

    async def upsert(self, state: PresenceState) -> None:
        self._store.presence[state.user_id] = state


@dataclass
class FakeTypingReader:
    _store: FakeStore

    async def list_active(self, conversation_id: UUID, *, updated_after: datetime) -> list[TypingState]:
        return [
            t for t in self._store.typing.values()
            if t.conversation_id == conversation_id and t.is_typing and t.updated_at > updated_after
        ]


@dataclass
class FakeTypingWriter:
    _store: FakeStore

    async def upsert(self, state: TypingState) -> None:
        self._store.typing[(state.conversation_id, state.user_id)] = state

    async def delete(self, conversation_id: UUID, user_id: UUID) -> None:
        self._store.typing.pop((conversation_id, user_id), None)

    async def purge_older_than(self, ts: datetime) -> int:
        stale = [k for k, t in self._store.typing.items() if t.updated_at < ts]
        for key in stale:
            del self._store.typing[key]
        return len(stale)


@dataclass
class FakeNotificationReader:
    _store: FakeStore

    async def list_for_user(
        self, user_id: UUID, *, unread_only: bool = False, limit: int = 50,
    ) -> list[NotificationEvent]:
        rows = [
            n for n in self._store.notifications
            if n.recipient_id == user_id and not (unread_only and n.is_read)
        ]
        return sorted(rows, key=lambda n: n.created_at, reverse=True)[:limit]


@dataclass
class FakeNotificationWriter:
    _store: FakeStore

    async def add(self, event: NotificationEvent) -> None:
        self._store.notifications.append(event)

    async def mark_read(self, user_id: UUID, ids: list[UUID]) -> int:
        count = 0
        for i, n in enumerate(self._store.notifications):
            if n.recipient_id == user_id and n.id in ids and not n.is_read:
                self._store.notifications[i] = replace(n, is_read=True)
                count += 1
        return count


@dataclass
class FakeOutboxWriter:
    _store: FakeStore

    @property
    def _records(self) -> list[OutboxRecord]:
        return self._store.outbox

    async def add(self, event_type: str, payload: dict[str, Any]) -> None:
        record = OutboxRecord(id=len(self._store.outbox) + 1, event_type=event_type, payload=payload, attempts=0)
        self._store.outbox.append(record)
        self._store.outbox_status[record.id] = "pending"

    async def fetch_pending(self, batch_size: int) -> list[OutboxRecord]:
        batch = [
            r for r in self._store.outbox
            if self._store.outbox_status[r.id] in ("pending", "failed")
        ][:batch_size]
        for r in batch:
            self._store.outbox_status[r.id] = "processing"
        return batch

    async def mark_sent(self, ids: list[int]) -> None:
        for record_id in ids:
            self._store.outbox_status[record_id] = "sent"

    async def mark_failed(self, record_id: int, next_retry_at: datetime) -> None:
        self._store.outbox_status[record_id] = "failed"
        for r in self._store.outbox:
            if r.id == record_id:
                r.attempts += 1

    async def mark_dead(self, record_id: int) -> None:
        self._store.outbox_status[record_id] = "dead"


@dataclass
class FakeUoW:
    """In-memory UoW for unit tests."""

    store: FakeStore = field(default_factory=FakeStore)
    _committed: bool = False
    _rolled_back: bool = False

    def __post_init__(self) -> None:
        s = self.store
        self.conversations = FakeConversationReader(s)
        self.conversations_w = FakeConversationWriter(s)
        self.messages = FakeMessageReader(s)
        self.messages_w = FakeMessageWriter(s)
        self.reactions = FakeReactionReader(s)
        self.reactions_w = FakeReactionWriter(s)
        self.presence = FakePresenceReader(s)
        self.presence_w = FakePresenceWriter(s)
        self.typing = FakeTypingReader(s)
        self.typing_w = FakeTypingWriter(s)
        self.notifications = FakeNotificationReader(s)
        self.notifications_w = FakeNotificationWriter(s)
        self.outbox = FakeOutboxWriter(s)

    async def flush(self) -> None:
        pass

    async def commit(self) -> None:
        self._committed = True

    async def rollback(self) -> None:
        self._rolled_back = True


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


# ---------------------------------------------------------------- client-side fakes


class FakePendingOutbox:
    def __init__(self, capacity: int = 10) -> None:
        self.capacity = capacity
        self.items: list[PendingSend] = []

    async def enqueue(self, item: PendingSend) -> None:
        if any(p.client_msg_id == item.client_msg_id for p in self.items):
            return
        if len(self.items) >= self.capacity:
            raise OutboxFullError("Pending outbox is full")
        self.items.append(item)

    async def list_pending(self, limit: int = 100) -> list[PendingSend]:
        return list(self.items[:limit])

    async def remove(self, client_msg_id: UUID) -> None:
        self.items = [p for p in self.items if p.client_msg_id != client_msg_id]

    async def bump_attempts(self, client_msg_id: UUID) -> None:
        self.items = [
            replace(p, attempts=p.attempts + 1) if p.client_msg_id == client_msg_id else p
            for p in self.items
        ]

    async def count(self) -> int:
        return len(self.items)


class RecordingPresenter:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.presented: list[NotificationEvent] = []

    async def present(self, event: NotificationEvent) -> None:
        if self.fail:
            raise RuntimeError("presenter down")
        self.presented.append(event)


class StaticProfiles:
    def __init__(self, names: dict[UUID, str]) -> None:
        self._names = names

    async def display_name(self, user_id: UUID) -> str | None:
        return self._names.get(user_id)


@pytest.fixture
def broker() -> InMemoryBroker:
    return InMemoryBroker()


def make_fabric(broker: InMemoryBroker) -> ChannelFabric:
    return ChannelFabric(
        broker.transport(),
        connect_timeout=0.5,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.05,
    )


@pytest_asyncio.fixture
async def fabric(broker):
    fab = make_fabric(broker)
    await fab.start()
    await fab.wait_connected(1)
    yield fab
    await fab.close()


async def relay(store: FakeStore, publisher) -> int:
    """Drain the event outbox the way the relay worker does."""
    return await process_batch(FakeUoW(store=store), publisher, batch_size=500, max_attempts=5)
