"""Tests for chat membership, transcripts and the transcript poller."""

import asyncio

import pytest
import pytest_asyncio

from eventnet.chat import TranscriptPoller
from eventnet.config import Table
from eventnet.errors import CollaboratorFailure, EmptyMessage, NotAMember
from eventnet.metrics import registry
from eventnet.models import Message
from eventnet.utils import new_id, utc_now

# =============================================================================
# Helpers
# =============================================================================


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


def sample(name: str, labels: dict | None = None) -> float:
    return registry.get_sample_value(name, labels or {}) or 0.0


class FakeMembership:
    """Transcript source whose fetches can be held open and made to fail."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.cancelled: list[str] = []
        self.gate = asyncio.Event()
        self.gate.set()
        self.failures = 0

    def transcript(self, event_id: str) -> list[Message]:
        return [
            Message(
                id=new_id(),
                event_id=event_id,
                sender_id="user-ada",
                content=f"hello {event_id}",
                created_at=utc_now(),
            )
        ]

    async def fetch_transcript(self, event_id, *, reader_id=None):
        self.calls.append(event_id)
        try:
            await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled.append(event_id)
            raise
        if self.failures:
            self.failures -= 1
            raise CollaboratorFailure("backend unavailable")
        return self.transcript(event_id)


class UninterruptibleMembership(FakeMembership):
    """Transport that cannot abort a request once it is on the wire."""

    async def fetch_transcript(self, event_id, *, reader_id=None):
        self.calls.append(event_id)
        try:
            await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled.append(event_id)
            await self.gate.wait()
        return self.transcript(event_id)


@pytest.fixture
def fake():
    return FakeMembership()


@pytest.fixture
def delivered():
    return []


@pytest_asyncio.fixture
async def poller(fake, delivered):
    def record(event_id, messages):
        delivered.append((event_id, messages))

    instance = TranscriptPoller(fake, on_update=record, interval=60)
    yield instance
    await instance.close()


@pytest_asyncio.fixture
async def event_id(catalog, users, event_fields, registrations):
    """Event created by Ada with Ada and Grace registered."""
    event = await catalog.create_event(users["ada"], **event_fields)
    await registrations.register(event.id, users["ada"])
    await registrations.register(event.id, users["grace"])
    return event.id


# =============================================================================
# Membership
# =============================================================================


@pytest.mark.asyncio
async def test_accessible_events_sorted_by_date(membership, catalog, registrations, users, event_fields):
    late = await catalog.create_event(users["ada"], **{**event_fields, "date": "2025-10-01T09:00"})
    early = await catalog.create_event(users["ada"], **{**event_fields, "date": "2025-02-01T09:00"})
    other = await catalog.create_event(users["ada"], **{**event_fields, "date": "2025-05-01T09:00"})
    await registrations.register(late.id, users["grace"])
    await registrations.register(early.id, users["grace"])
    await registrations.register(other.id, users["alan"])

    events = await membership.accessible_events(users["grace"])

    assert [e.id for e in events] == [early.id, late.id]
    assert await membership.accessible_events(users["linus"]) == []


@pytest.mark.asyncio
async def test_membership_follows_registration(membership, registrations, users, event_id):
    assert await membership.is_member(event_id, users["grace"])

    await registrations.unregister(event_id, users["grace"])

    assert not await membership.is_member(event_id, users["grace"])


# =============================================================================
# Transcripts
# =============================================================================


@pytest.mark.asyncio
async def test_sent_message_appears_in_next_fetch(membership, users, event_id):
    message = await membership.send_message(event_id, users["grace"], "  Hi everyone  ")

    assert message.content == "Hi everyone"
    assert message.sender_id == users["grace"]
    transcript = await membership.fetch_transcript(event_id)
    assert [m.id for m in transcript] == [message.id]


@pytest.mark.asyncio
async def test_transcript_is_in_send_order(membership, users, event_id):
    sent = [
        await membership.send_message(event_id, users["ada" if i % 2 else "grace"], f"message {i}")
        for i in range(6)
    ]

    transcript = await membership.fetch_transcript(event_id, reader_id=users["ada"])

    assert [m.id for m in transcript] == [m.id for m in sent]
    timestamps = [m.created_at for m in transcript]
    assert timestamps == sorted(timestamps)


@pytest.mark.asyncio
async def test_timestamp_ties_are_broken_by_sequence(membership, store, users, event_id):
    stamp = "2025-06-01T10:00:00.000000Z"
    ids = []
    for text in ("first", "second", "third"):
        row = await store.insert(
            Table.MESSAGES,
            {"event_id": event_id, "sender_id": users["ada"], "content": text, "created_at": stamp},
        )
        ids.append(row["id"])
    earlier = await store.insert(
        Table.MESSAGES,
        {
            "event_id": event_id,
            "sender_id": users["grace"],
            "content": "earlier",
            "created_at": "2025-06-01T09:00:00.000000Z",
        },
    )

    transcript = await membership.fetch_transcript(event_id)

    assert [m.id for m in transcript] == [earlier["id"], *ids]
    assert [m.seq for m in transcript[1:]] == sorted(m.seq for m in transcript[1:])


@pytest.mark.asyncio
async def test_empty_message_is_rejected(membership, store, users, event_id):
    with pytest.raises(EmptyMessage):
        await membership.send_message(event_id, users["grace"], " \n\t ")

    assert await store.count(Table.MESSAGES) == 0


@pytest.mark.asyncio
async def test_non_member_cannot_send(membership, store, users, event_id):
    with pytest.raises(NotAMember):
        await membership.send_message(event_id, users["linus"], "Let me in")

    assert await store.count(Table.MESSAGES) == 0


@pytest.mark.asyncio
async def test_non_member_cannot_read(membership, users, event_id):
    with pytest.raises(NotAMember):
        await membership.fetch_transcript(event_id, reader_id=users["linus"])


@pytest.mark.asyncio
async def test_chat_rooms_bundle_transcripts(membership, users, event_id):
    await membership.send_message(event_id, users["ada"], "Welcome")

    rooms = await membership.chat_rooms(users["grace"])

    assert len(rooms) == 1
    assert rooms[0].event.id == event_id
    assert [m.content for m in rooms[0].messages] == ["Welcome"]


@pytest.mark.asyncio
async def test_transcript_entries_join_sender_profiles(membership, users, event_id):
    await membership.send_message(event_id, users["ada"], "Welcome")
    await membership.send_message(event_id, users["grace"], "Thanks")

    entries = await membership.transcript_entries(event_id, users["grace"])

    assert [(e.sender.full_name, e.message.content) for e in entries] == [
        ("Ada Lovelace", "Welcome"),
        ("Grace Hopper", "Thanks"),
    ]


# =============================================================================
# Transcript Poller
# =============================================================================


@pytest.mark.asyncio
async def test_select_fetches_immediately_then_on_interval(fake, delivered):
    poller = TranscriptPoller(fake, on_update=lambda e, m: delivered.append((e, m)), interval=0.01)

    async with poller:
        await poller.select("e-1")
        await wait_until(lambda: len(delivered) >= 3)

    assert {event for event, _ in delivered} == {"e-1"}
    assert not poller.is_polling


@pytest.mark.asyncio
async def test_overlapping_refreshes_share_one_fetch(poller, fake, delivered):
    fake.gate.clear()
    await poller.select("e-1")
    await wait_until(lambda: fake.calls == ["e-1"])
    coalesced_before = sample("transcript_polls_total", {"outcome": "coalesced"})

    first = asyncio.create_task(poller.refresh())
    second = asyncio.create_task(poller.refresh())
    await asyncio.sleep(0.01)
    fake.gate.set()
    results = await asyncio.gather(first, second)

    assert fake.calls == ["e-1"]
    assert results[0] is results[1]
    assert len(delivered) == 1
    assert sample("transcript_polls_total", {"outcome": "coalesced"}) == coalesced_before + 2


@pytest.mark.asyncio
async def test_switching_chat_cancels_previous_fetch(poller, fake, delivered):
    fake.gate.clear()
    await poller.select("e-1")
    await wait_until(lambda: fake.calls == ["e-1"])

    await poller.select("e-2")

    assert fake.cancelled == ["e-1"]
    assert poller.active_event_id == "e-2"
    await wait_until(lambda: "e-2" in fake.calls)
    fake.gate.set()
    await wait_until(lambda: delivered)
    assert [event for event, _ in delivered] == ["e-2"]


@pytest.mark.asyncio
async def test_refresh_returns_none_when_chat_switches(poller, fake, delivered):
    fake.gate.clear()
    await poller.select("e-1")
    await wait_until(lambda: fake.calls == ["e-1"])

    pending = asyncio.create_task(poller.refresh())
    await asyncio.sleep(0.01)
    await poller.select("e-2")
    fake.gate.set()

    assert await pending is None
    assert not pending.cancelled()
    assert fake.cancelled == ["e-1"]
    await wait_until(lambda: delivered)
    assert [event for event, _ in delivered] == ["e-2"]


@pytest.mark.asyncio
async def test_cancelled_refresh_caller_leaves_fetch_running(poller, fake, delivered):
    fake.gate.clear()
    await poller.select("e-1")
    await wait_until(lambda: fake.calls == ["e-1"])

    pending = asyncio.create_task(poller.refresh())
    await asyncio.sleep(0.01)
    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending

    fake.gate.set()
    await wait_until(lambda: delivered)
    assert fake.cancelled == []
    assert [event for event, _ in delivered] == ["e-1"]


@pytest.mark.asyncio
async def test_late_response_for_previous_chat_is_dropped(delivered):
    slow = UninterruptibleMembership()
    slow.gate.clear()
    stale_before = sample("transcript_polls_total", {"outcome": "stale"})

    async with TranscriptPoller(
        slow, on_update=lambda e, m: delivered.append((e, m)), interval=60
    ) as poller:
        await poller.select("e-1")
        await wait_until(lambda: slow.calls == ["e-1"])

        switching = asyncio.create_task(poller.select("e-2"))
        await asyncio.sleep(0.01)
        slow.gate.set()
        await switching
        await wait_until(lambda: delivered)

    assert [event for event, _ in delivered] == ["e-2"]
    assert sample("transcript_polls_total", {"outcome": "stale"}) == stale_before + 1


@pytest.mark.asyncio
async def test_fetch_error_is_counted_and_polling_continues(fake, delivered):
    fake.failures = 1
    errors_before = sample("transcript_polls_total", {"outcome": "error"})

    async with TranscriptPoller(
        fake, on_update=lambda e, m: delivered.append((e, m)), interval=0.01
    ) as poller:
        await poller.select("e-1")
        await wait_until(lambda: delivered)

    assert fake.calls[:2] == ["e-1", "e-1"]
    assert sample("transcript_polls_total", {"outcome": "error"}) == errors_before + 1


@pytest.mark.asyncio
async def test_failed_refresh_delivers_nothing(poller, fake, delivered):
    fake.gate.clear()
    fake.failures = 1
    await poller.select("e-1")
    await wait_until(lambda: fake.calls == ["e-1"])

    joined = asyncio.create_task(poller.refresh())
    await asyncio.sleep(0.01)
    fake.gate.set()

    assert await joined is None
    assert delivered == []
    assert await poller.refresh() is not None
    assert len(delivered) == 1


@pytest.mark.asyncio
async def test_watch_releases_polling_on_error(poller):
    with pytest.raises(RuntimeError, match="render failed"):
        async with poller.watch("e-1"):
            assert poller.is_polling
            raise RuntimeError("render failed")

    assert not poller.is_polling
    assert poller.active_event_id is None


@pytest.mark.asyncio
async def test_select_none_stops_polling(poller, fake):
    await poller.select("e-1")
    await poller.select(None)

    assert not poller.is_polling
    assert await poller.refresh() is None


@pytest.mark.asyncio
async def test_suspend_and_resume(fake, delivered):
    poller = TranscriptPoller(fake, on_update=lambda e, m: delivered.append((e, m)), interval=0.01)
    async with poller:
        await poller.select("e-1")
        await wait_until(lambda: delivered)

        await poller.suspend()
        assert poller.is_suspended
        assert not poller.is_polling
        assert poller.active_event_id == "e-1"
        calls = len(fake.calls)
        await asyncio.sleep(0.05)
        assert len(fake.calls) == calls

        await poller.resume()
        await wait_until(lambda: len(fake.calls) > calls)
        assert poller.is_polling


@pytest.mark.asyncio
async def test_async_update_handler_is_awaited(fake):
    seen = []

    async def handler(event_id, messages):
        await asyncio.sleep(0)
        seen.append(event_id)

    async with TranscriptPoller(fake, on_update=handler, interval=60) as poller:
        await poller.select("e-1")
        await wait_until(lambda: seen)
        await poller.refresh()

    assert seen == ["e-1", "e-1"]


@pytest.mark.asyncio
async def test_active_poller_gauge(poller):
    before = sample("active_transcript_pollers")

    await poller.select("e-1")
    await wait_until(lambda: sample("active_transcript_pollers") == before + 1)

    await poller.select(None)
    assert sample("active_transcript_pollers") == before


@pytest.mark.asyncio
async def test_closed_poller_refuses_work(fake):
    poller = TranscriptPoller(fake, on_update=lambda e, m: None, interval=60)
    await poller.select("e-1")

    await poller.close()

    assert not poller.is_polling
    with pytest.raises(RuntimeError):
        await poller.select("e-1")


@pytest.mark.asyncio
async def test_poller_over_real_store(membership, users, event_id):
    seen: list[list[str]] = []
    poller = TranscriptPoller(
        membership,
        on_update=lambda e, messages: seen.append([m.content for m in messages]),
        interval=60,
        reader_id=users["grace"],
    )

    async with poller, poller.watch(event_id):
        await wait_until(lambda: seen)
        await membership.send_message(event_id, users["ada"], "Doors open at 9")
        await poller.refresh()

    assert seen == [[], ["Doors open at 9"]]
