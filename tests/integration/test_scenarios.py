"""End-to-end flows across two client sessions, the relay and a shared store."""
from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from chat_core.application import topics
from chat_core.domain.value_objects.enums import EventKind, FrameType, MessageStatus, SendState
from chat_core.infrastructure.notify.presenters import FabricToastPresenter
from chat_core.realtime.fabric import ChannelFabric
from chat_core.realtime.session import ChatSession
from chat_core.services import ledger_service
from tests.conftest import FAST_RETRY, FakePendingOutbox, eventually, make_fabric, relay


@pytest_asyncio.fixture
async def relay_loop(broker, store):
    fab = make_fabric(broker)
    await fab.start()
    await fab.wait_connected(1)

    async def _loop():
        while True:
            await relay(store, fab)
            await asyncio.sleep(0.01)

    task = asyncio.create_task(_loop())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    await fab.close()


@pytest_asyncio.fixture
async def sessions(broker, store, clock, relay_loop):
    """Start sessions on demand; each gets its own transport on the shared broker."""
    started = []

    async def _start(user_id, *, presenter_for=None, typing_ttl=3.0):
        transport = broker.transport()
        fab = ChannelFabric(transport, connect_timeout=0.5, reconnect_base_delay=0.01, reconnect_max_delay=0.05)
        session = ChatSession(
            user_id,
            fab,
            store.uow_factory(),
            FakePendingOutbox(),
            presenter=presenter_for(fab) if presenter_for else None,
            retry=FAST_RETRY,
            clock=clock,
            typing_ttl=typing_ttl,
            typing_margin=0.05,
            flush_interval=0.05,
        )
        await session.start(connect_timeout=1)
        started.append(session)
        return session, transport

    yield _start
    for session in reversed(started):
        await session.close()


@pytest.mark.asyncio
async def test_first_message_is_delivered_then_read(sessions, store, alice, bob):
    a, _ = await sessions(alice)
    b, _ = await sessions(bob, presenter_for=FabricToastPresenter)
    toasts = await b.fabric.subscribe(topics.notifications(bob))
    assert (await toasts.receive()).type == FrameType.SYNC

    view_a = await a.open_conversation(bob)
    view_b = await b.open_conversation(alice)
    await view_b.wait_synced(1)
    assert view_a.conversation_id == view_b.conversation_id
    assert len(store.conversations) == 1

    result = await a.send(view_a.conversation_id, "hi")

    assert result.state == SendState.SENT
    assert result.message.status == MessageStatus.SENT
    await eventually(lambda: [m.content for m in view_b.messages()] == ["hi"])
    await eventually(lambda: store.messages[0].status == MessageStatus.DELIVERED)

    toast = await asyncio.wait_for(toasts.receive(), 1)
    assert toast.kind == EventKind.INSERT
    assert toast.data["body"] == "hi"

    view_b.mark_visible()

    await eventually(lambda: store.messages[0].status == MessageStatus.READ)
    await eventually(lambda: view_a.messages()[0].status == MessageStatus.READ)
    assert len(store.messages) == 1


@pytest.mark.asyncio
async def test_typing_clears_itself_after_ttl(sessions, store, alice, bob):
    a, _ = await sessions(alice, typing_ttl=0.1)
    b, _ = await sessions(bob)
    view = await a.open_conversation(bob)
    await b.open_conversation(alice)
    cid = view.conversation_id
    sub, _ = b.typing._watches[cid]
    await eventually(lambda: not sub.stale)

    await a.typing.set_typing(cid)

    await eventually(lambda: b.typing.typing_users(cid) == {alice})
    await eventually(lambda: b.typing.typing_users(cid) == set())
    await eventually(lambda: (cid, alice) not in store.typing)


async def _shared_message(sessions, alice, bob):
    a, _ = await sessions(alice)
    b, _ = await sessions(bob)
    view = await a.open_conversation(bob)
    await b.open_conversation(alice)
    result = await b.send(view.conversation_id, "look")
    return a, b, result.message


@pytest.mark.asyncio
async def test_same_reaction_twice_leaves_none(sessions, store, alice, bob):
    a, b, msg = await _shared_message(sessions, alice, bob)

    await a.reactions.set_reaction(msg.id, "❤️")
    await eventually(lambda: b.reactions.reaction_of(msg.id, alice) == "❤️")
    await a.reactions.set_reaction(msg.id, "❤️")

    assert (msg.id, alice) not in store.reactions
    await eventually(lambda: a.reactions.groups(msg.id) == [] and b.reactions.groups(msg.id) == [])


@pytest.mark.asyncio
async def test_different_reaction_replaces(sessions, store, alice, bob):
    a, b, msg = await _shared_message(sessions, alice, bob)

    await a.reactions.set_reaction(msg.id, "👍")
    await a.reactions.set_reaction(msg.id, "🔥")

    assert store.reactions[(msg.id, alice)].emoji == "🔥"
    await eventually(lambda: b.reactions.reaction_of(msg.id, alice) == "🔥")
    [group] = b.reactions.groups(msg.id)
    assert (group.emoji, group.count, group.user_ids) == ("🔥", 1, frozenset({alice}))


@pytest.mark.asyncio
async def test_catch_up_after_network_drop(sessions, store, alice, bob):
    a, _ = await sessions(alice)
    b, b_transport = await sessions(bob)
    view_a = await a.open_conversation(bob)
    view_b = await b.open_conversation(alice)
    cid = view_a.conversation_id
    await a.send(cid, "before")
    await eventually(lambda: len(view_b.messages()) == 1)
    last_seen = view_b.cursor

    b_transport.go_offline()
    await eventually(lambda: not b.fabric.connected)
    for text in ("one", "two", "three"):
        await a.send(cid, text)

    async with store.uow_factory()() as uow:
        missed = await ledger_service.list_messages(cid, uow, after=last_seen)
    assert [m.content for m in missed] == ["one", "two", "three"]

    b_transport.go_online()

    await eventually(lambda: len(view_b.messages()) == 4)
    await eventually(lambda: len(view_a.messages()) == 4)
    assert [m.id for m in view_b.messages()] == [m.id for m in view_a.messages()]
    assert view_b.degraded is False
