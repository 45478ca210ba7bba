from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from chat_core.domain.value_objects.enums import MessageStatus, SendState
from chat_core.realtime.conversation_view import ConversationView
from chat_core.realtime.sender import MessageSender
from chat_core.services import ledger_service
from tests.conftest import FAST_RETRY, FakePendingOutbox, eventually, make_conversation, relay


@pytest.fixture
def conv(store, alice, bob):
    conv = make_conversation(alice, bob)
    store.conversations[conv.id] = conv
    return conv


@pytest_asyncio.fixture
async def open_view(store, fabric, conv, clock):
    views = []

    def _open(user_id):
        sender = MessageSender(store.uow_factory(), FakePendingOutbox(), retry=FAST_RETRY, clock=clock)
        view = ConversationView(
            conv, user_id, fabric, store.uow_factory(), sender, retry=FAST_RETRY, clock=clock,
        )
        views.append(view)
        return view, sender

    yield _open
    for view in views:
        await view.close()


async def _append(store, conv, sender_id, content, clock):
    async with store.uow_factory()() as uow:
        msg, _ = await ledger_service.append_message(conv.id, sender_id, content, uow, clock=clock)
    return msg


@pytest.mark.asyncio
async def test_inbound_message_is_delivered_then_read_when_visible(store, fabric, conv, open_view, alice, bob, clock):
    await _append(store, conv, alice, "hi", clock)
    view, _ = open_view(bob)

    await view.start()
    await view.wait_synced(1)
    await eventually(lambda: store.messages[0].status == MessageStatus.DELIVERED)
    await view.drain()
    assert [m.status for m in view.messages()] == [MessageStatus.DELIVERED]

    view.mark_visible()

    await eventually(lambda: store.messages[0].status == MessageStatus.READ)
    await eventually(lambda: view.messages()[0].status == MessageStatus.READ)
    assert store.messages[0].read_at == clock.now()


@pytest.mark.asyncio
async def test_replayed_insert_does_not_regress_status(store, fabric, conv, open_view, alice, bob, clock):
    await _append(store, conv, alice, "hi", clock)
    view, _ = open_view(bob)
    await view.start()
    await view.wait_synced(1)
    await eventually(lambda: store.messages[0].status == MessageStatus.DELIVERED)

    # Replays the original SENT insert along with the status change.
    await relay(store, fabric)
    await asyncio.sleep(0.05)
    await view.drain()

    assert [m.status for m in view.messages()] == [MessageStatus.DELIVERED]


@pytest.mark.asyncio
async def test_own_messages_are_not_advanced(store, conv, open_view, alice, clock):
    await _append(store, conv, alice, "mine", clock)
    view, _ = open_view(alice)

    await view.start()
    await view.wait_synced(1)
    view.mark_visible()
    await view.drain()

    assert [m.content for m in view.messages()] == ["mine"]
    assert store.messages[0].status == MessageStatus.SENT
    assert store.outbox_payloads("chat.message_status_changed") == []


@pytest.mark.asyncio
async def test_pending_send_is_reconciled_by_confirmed_insert(store, fabric, open_view, alice):
    view, sender = open_view(alice)
    await view.start()
    await view.wait_synced(1)
    store.offline = True

    result = await view.send("hello")
    await view.drain()

    assert result.state == SendState.PENDING
    assert [(p.message.content, p.state) for p in view.pending()] == [("hello", SendState.PENDING)]
    assert view.messages() == []

    store.offline = False
    await sender.flush_pending()
    await relay(store, fabric)

    await eventually(lambda: not view.pending() and len(view.messages()) == 1)
    assert view.messages()[0].client_msg_id == result.client_msg_id


@pytest.mark.asyncio
async def test_pending_items_are_restored_on_start(store, conv, open_view, alice):
    view, sender = open_view(alice)
    store.offline = True
    parked = await sender.send(conv.id, alice, "queued")
    store.offline = False

    await view.start()
    await view.wait_synced(1)

    assert [p.message.client_msg_id for p in view.pending()] == [parked.client_msg_id]


@pytest.mark.asyncio
async def test_confirmed_send_is_merged_immediately(store, open_view, alice):
    view, _ = open_view(alice)
    await view.start()
    await view.wait_synced(1)

    result = await view.send("now")
    await view.drain()

    assert result.state == SendState.SENT
    assert [m.id for m in view.messages()] == [result.message.id]
    assert view.cursor == result.message.cursor
    assert view.pending() == []


@pytest.mark.asyncio
async def test_failed_snapshot_marks_view_degraded_until_resync(store, fabric, conv, open_view, bob, alice, clock):
    view, _ = open_view(bob)
    store.offline = True

    await view.start()
    await eventually(lambda: view.degraded)

    store.offline = False
    await _append(store, conv, alice, "while away", clock)
    await fabric.resync(view._sub)
    await view.wait_synced(1)
    await view.drain()

    assert view.degraded is False
    assert [m.content for m in view.messages()] == ["while away"]


@pytest.mark.asyncio
async def test_catch_up_starts_at_oldest_unread(store, conv, open_view, alice, bob, clock):
    view, _ = open_view(bob)
    view.visible = True
    first = await _append(store, conv, alice, "one", clock)
    view._merge(first)
    assert view._catch_up_from().seq == first.seq - 1

    async with store.uow_factory()() as uow:
        await ledger_service.advance_conversation(conv.id, "read", bob, uow, clock=clock)
    view._merge(store.messages[0])
    second = await _append(store, conv, alice, "two", clock)
    view._merge(second)

    items = await view._snapshot()

    assert [i["content"] for i in items] == ["two"]
