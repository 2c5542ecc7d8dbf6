"""End-to-end conversations between client engines over the in-memory relay."""
from __future__ import annotations

import uuid

import pytest

from room_relay.client.engine import DEFAULT_PLACEHOLDER, TICKS, ClientEngine
from room_relay.domain.value_objects.enums import LocalStatus, MessageStatus
from tests.conftest import LoopbackRelay

ROOM = "room-42"
SECRET = "correct horse"


async def _join(relay: LoopbackRelay, connection_id: str, engine: ClientEngine):
    channel = relay.connect(connection_id, engine)
    await channel.emit("join", engine.join_payload())
    return channel


@pytest.mark.asyncio
async def test_shared_passphrase_conversation():
    relay = LoopbackRelay()
    alice = ClientEngine(ROOM, user_id="alice", display_name="Alice")
    bob = ClientEngine(ROOM, user_id="bob", display_name="Bob")
    await _join(relay, "c-alice", alice)
    await _join(relay, "c-bob", bob)
    await alice.unlock(SECRET)
    await bob.unlock(SECRET)

    message_id = await alice.send("hello")

    (seen,) = bob.view()
    assert seen.text == "hello"
    assert seen.display_name == "Alice"
    assert seen.mine is False

    (mine,) = alice.view()
    assert mine.message_id == message_id
    assert mine.tick == TICKS[LocalStatus.READ]

    stored = relay.uow.messages._messages[uuid.UUID(message_id)]
    assert stored.effective_status is MessageStatus.READ
    assert b"hello" not in stored.ciphertext


@pytest.mark.asyncio
async def test_wrong_passphrase_sees_placeholder_and_never_reads():
    relay = LoopbackRelay()
    alice = ClientEngine(ROOM, user_id="alice", display_name="Alice")
    eve = ClientEngine(ROOM, user_id="eve", display_name="Eve")
    await _join(relay, "c-alice", alice)
    await _join(relay, "c-eve", eve)
    await alice.unlock(SECRET)
    await eve.unlock("wrong")
    assert eve.fingerprint != alice.fingerprint

    await alice.send("hello")

    assert eve.view()[0].text == DEFAULT_PLACEHOLDER
    assert alice.view()[0].tick == TICKS[LocalStatus.DELIVERED]


@pytest.mark.asyncio
async def test_two_tabs_same_text_are_two_bubbles():
    relay = LoopbackRelay()
    tab1 = ClientEngine(ROOM, user_id="alice", display_name="Alice")
    tab2 = ClientEngine(ROOM, user_id="alice", display_name="Alice")
    await _join(relay, "tab-1", tab1)
    await _join(relay, "tab-2", tab2)
    await tab1.unlock(SECRET)
    await tab2.unlock(SECRET)

    await tab1.send("same")
    await tab2.send("same")

    for tab in (tab1, tab2):
        rows = tab.view()
        assert [r.text for r in rows] == ["same", "same"]
        assert len({r.message_id for r in rows}) == 2
        assert all(r.mine for r in rows)
    assert len(relay.uow.messages._messages) == 2


@pytest.mark.asyncio
async def test_fresh_room_join_mints_identity():
    relay = LoopbackRelay()
    newcomer = ClientEngine("fresh-room", display_name="Newbie")

    channel = await _join(relay, "c-new", newcomer)

    assert uuid.UUID(newcomer.user_id)
    assert len(newcomer.timeline) == 0
    assert channel.emitted[0][0] == "join"


@pytest.mark.asyncio
async def test_late_joiner_reads_history_after_unlock():
    relay = LoopbackRelay()
    alice = ClientEngine(ROOM, user_id="alice", display_name="Alice")
    await _join(relay, "c-alice", alice)
    await alice.unlock(SECRET)
    message_id = await alice.send("before you came")
    assert alice.view()[0].tick == TICKS[LocalStatus.SENT]

    carol = ClientEngine(ROOM, user_id="carol", display_name="Carol")
    await _join(relay, "c-carol", carol)
    assert carol.view()[0].text == DEFAULT_PLACEHOLDER
    assert alice.members == {"carol": "Carol"}

    await carol.unlock(SECRET)

    assert carol.view()[0].text == "before you came"
    assert alice.timeline.get(message_id).status is LocalStatus.READ


@pytest.mark.asyncio
async def test_other_rooms_hear_nothing():
    relay = LoopbackRelay()
    alice = ClientEngine(ROOM, user_id="alice", display_name="Alice")
    dave = ClientEngine("room-7", user_id="dave", display_name="Dave")
    await _join(relay, "c-alice", alice)
    await _join(relay, "c-dave", dave)
    await alice.unlock(SECRET)

    await alice.send("hello")

    assert len(dave.timeline) == 0
