from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
import pytest_asyncio

from chat_core.application import topics
from chat_core.application.dto.events import ChannelEvent
from chat_core.application.dto.payloads import TypingPayload, dump
from chat_core.domain.entities.typing_state import TypingState
from chat_core.domain.value_objects.enums import EventKind, FrameType
from chat_core.realtime.typing import TypingSignalBus
from tests.conftest import eventually


@pytest.fixture
def cid():
    return uuid.uuid4()


@pytest_asyncio.fixture
async def buses(fabric, store, clock):
    created = []

    def _make(user_id, *, ttl=30.0):
        bus = TypingSignalBus(fabric, user_id, store.uow_factory(), ttl=ttl, margin=1.0, clock=clock)
        created.append(bus)
        return bus

    yield _make
    for bus in created:
        await bus.close()


async def _watching(bus, cid):
    await bus.watch(cid)
    sub, _ = bus._watches[cid]
    await eventually(lambda: not sub.stale)


@pytest.mark.asyncio
async def test_typing_is_broadcast_and_persisted(buses, store, cid, alice, bob):
    mine, theirs = buses(alice), buses(bob)
    await _watching(theirs, cid)

    await mine.set_typing(cid)

    await eventually(lambda: theirs.typing_users(cid) == {alice})
    assert store.typing[(cid, alice)].is_typing is True

    await mine.clear_typing(cid)

    await eventually(lambda: theirs.typing_users(cid) == set())
    assert (cid, alice) not in store.typing


@pytest.mark.asyncio
async def test_indicator_expires_after_ttl(buses, store, cid, alice, bob):
    mine, theirs = buses(alice, ttl=0.05), buses(bob)
    await _watching(theirs, cid)

    await mine.set_typing(cid)
    await eventually(lambda: theirs.typing_users(cid) == {alice})

    await eventually(lambda: theirs.typing_users(cid) == set())
    await eventually(lambda: (cid, alice) not in store.typing)


@pytest.mark.asyncio
async def test_stale_indicator_is_ignored_without_clear(buses, cid, alice, bob, clock):
    mine, theirs = buses(alice), buses(bob)
    await _watching(theirs, cid)
    await mine.set_typing(cid)
    await eventually(lambda: theirs.typing_users(cid) == {alice})

    # The sender vanished without clearing.
    clock.advance(31.5)

    assert theirs.typing_users(cid) == set()


@pytest.mark.asyncio
async def test_own_typing_is_not_reported(buses, cid, alice):
    mine = buses(alice)
    await _watching(mine, cid)

    await mine.set_typing(cid)
    await mine.set_typing(cid)

    assert mine.typing_users(cid) == set()
    assert len(mine._timers) == 1


@pytest.mark.asyncio
async def test_sync_uses_stored_rows_and_their_age(buses, store, cid, alice, bob, clock):
    carol = uuid.uuid4()
    store.typing[(cid, alice)] = TypingState(cid, alice, True, clock.now())
    store.typing[(cid, carol)] = TypingState(cid, carol, True, clock.now() - timedelta(minutes=5))
    theirs = buses(bob)

    await _watching(theirs, cid)

    assert theirs.typing_users(cid) == {alice}


@pytest.mark.asyncio
async def test_close_clears_held_indicators(buses, store, cid, alice, bob):
    mine, theirs = buses(alice), buses(bob)
    await _watching(theirs, cid)
    await mine.set_typing(cid)
    await eventually(lambda: theirs.typing_users(cid) == {alice})

    await mine.close()

    await eventually(lambda: theirs.typing_users(cid) == set())
    assert mine._timers == {}
    assert store.typing == {}


@pytest.mark.asyncio
async def test_persistence_failure_does_not_block_signal(buses, store, cid, alice, bob):
    mine, theirs = buses(alice), buses(bob)
    await _watching(theirs, cid)
    store.offline = True

    await mine.set_typing(cid)

    await eventually(lambda: theirs.typing_users(cid) == {alice})
    assert store.typing == {}


def _typing(cid, user_id, clock, is_typing=True):
    state = TypingState(cid, user_id, is_typing, clock.now())
    return ChannelEvent(topics.typing(cid), FrameType.EVENT, EventKind.UPDATE, dump(TypingPayload, state))


@pytest.mark.asyncio
async def test_signal_during_snapshot_survives_sync(buses, cid, alice, bob, clock):
    theirs = buses(bob)
    await _watching(theirs, cid)
    sub, _ = theirs._watches[cid]

    rows = await sub.snapshot()
    theirs._apply(cid, _typing(cid, alice, clock))
    theirs._apply(cid, ChannelEvent(sub.topic, FrameType.SYNC, data={"items": rows}))

    assert theirs.typing_users(cid) == {alice}


@pytest.mark.asyncio
async def test_clear_during_snapshot_survives_sync(buses, store, cid, alice, bob, clock):
    store.typing[(cid, alice)] = TypingState(cid, alice, True, clock.now())
    theirs = buses(bob)
    await _watching(theirs, cid)
    sub, _ = theirs._watches[cid]

    rows = await sub.snapshot()
    theirs._apply(cid, _typing(cid, alice, clock, is_typing=False))
    theirs._apply(cid, ChannelEvent(sub.topic, FrameType.SYNC, data={"items": rows}))

    assert theirs.typing_users(cid) == set()


@pytest.mark.asyncio
async def test_bad_sync_row_does_not_stop_the_watcher(buses, cid, alice, bob, clock):
    theirs = buses(bob)
    await _watching(theirs, cid)
    sub, task = theirs._watches[cid]

    sub._deliver(ChannelEvent(sub.topic, FrameType.SYNC, data={"items": [{"is_typing": True}]}))
    sub._deliver(_typing(cid, alice, clock))

    await eventually(lambda: theirs.typing_users(cid) == {alice})
    assert not task.done()
