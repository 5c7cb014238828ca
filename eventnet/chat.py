"""Event chat rooms and transcript polling.

Every event has one chat room. A user may read and write it while they
hold an active registration for the event.

There is no push channel: the open transcript is kept fresh by
``TranscriptPoller``, a periodic task owned by whichever chat is active.

Poller guarantees:
- At most one fetch in flight per chat; overlapping refreshes share it
- Switching chats cancels the previous loop and its in-flight fetch
  before the new chat starts polling
- A response for a chat that is no longer active is dropped
- A failed fetch is logged and counted; the loop keeps its cadence

Example:
    >>> membership = ChatMembership(store)
    >>> async with TranscriptPoller(membership, on_update=render) as poller:
    ...     async with poller.watch(event_id):
    ...         await membership.send_message(event_id, user_id, "Hi all")
    ...         await poller.refresh()
"""

import asyncio
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, Optional

from eventnet.config import RegistrationStatus, Table, settings
from eventnet.errors import EmptyMessage, EventNetError, NotAMember
from eventnet.interfaces import IDataStore
from eventnet.logging import logger
from eventnet.metrics import (
    active_transcript_pollers,
    errors_total,
    messages_sent_total,
    transcript_polls_total,
)
from eventnet.models import ChatRoom, Event, Message, Profile, TranscriptEntry, parse_row, parse_rows
from eventnet.registrations import RegistrationAggregator
from eventnet.types import MessageData

TRANSCRIPT_ORDER = ("created_at", "seq")

TranscriptHandler = Callable[[str, list[Message]], Optional[Awaitable[None]]]
"""Called with the event ID and its full transcript after each delivered refresh."""


# =============================================================================
# Membership
# =============================================================================


class ChatMembership:
    """Which chat rooms a user may access, and their transcripts.

    Args:
        store: Data store holding events, registrations and messages
        registrations: Aggregator answering membership questions
    """

    def __init__(
        self,
        store: IDataStore,
        registrations: Optional[RegistrationAggregator] = None,
    ) -> None:
        self.store = store
        self.registrations = registrations or RegistrationAggregator(store)

    async def accessible_events(self, user_id: str) -> list[Event]:
        """Events the user is actively registered for, by date."""
        rows = await self.store.select(
            Table.REGISTRATIONS,
            {"user_id": user_id, "status": RegistrationStatus.REGISTERED.value},
        )
        event_ids = sorted({row["event_id"] for row in rows})
        if not event_ids:
            return []
        events = await self.store.select(Table.EVENTS, {"id__in": event_ids}, order=["date"])
        return parse_rows(Event, events)

    async def is_member(self, event_id: str, user_id: str) -> bool:
        return await self.registrations.is_registered(event_id, user_id)

    async def fetch_transcript(
        self,
        event_id: str,
        *,
        reader_id: Optional[str] = None,
    ) -> list[Message]:
        """Messages of the event's chat in send order.

        Args:
            event_id: Chat to read
            reader_id: When given, must be a member of the chat

        Raises:
            NotAMember: If ``reader_id`` has no active registration
        """
        if reader_id is not None and not await self.is_member(event_id, reader_id):
            raise NotAMember("Register for the event to read its chat")

        rows = await self.store.select(
            Table.MESSAGES, {"event_id": event_id}, order=list(TRANSCRIPT_ORDER)
        )
        messages = parse_rows(Message, rows)
        messages.sort(key=lambda m: (m.created_at, m.seq if m.seq is not None else 0))
        return messages

    async def send_message(self, event_id: str, sender_id: str, content: str) -> Message:
        """Append a message to the event's chat and return it.

        Raises:
            EmptyMessage: If ``content`` is blank
            NotAMember: If the sender has no active registration
        """
        text = content.strip()
        if not text:
            raise EmptyMessage("Message cannot be empty")
        if not await self.is_member(event_id, sender_id):
            raise NotAMember("Register for the event to write in its chat")

        draft: MessageData = {"event_id": event_id, "sender_id": sender_id, "content": text}
        row = await self.store.insert(Table.MESSAGES, dict(draft))
        message = parse_row(Message, row)
        messages_sent_total.inc()
        logger.info(f"💬 {sender_id} posted message {message.id} in event {event_id}")
        return message

    async def chat_rooms(self, user_id: str) -> list[ChatRoom]:
        """Every accessible chat with its transcript, fetched concurrently."""
        events = await self.accessible_events(user_id)
        transcripts = await asyncio.gather(*(self.fetch_transcript(e.id) for e in events))
        return [
            ChatRoom(event=event, messages=messages)
            for event, messages in zip(events, transcripts, strict=True)
        ]

    async def transcript_entries(self, event_id: str, reader_id: str) -> list[TranscriptEntry]:
        """Transcript joined with sender profiles."""
        messages = await self.fetch_transcript(event_id, reader_id=reader_id)
        sender_ids = sorted({m.sender_id for m in messages})
        profiles: dict[str, Profile] = {}
        if sender_ids:
            rows = await self.store.select(Table.PROFILES, {"id__in": sender_ids})
            profiles = {p.id: p for p in parse_rows(Profile, rows)}
        return [TranscriptEntry(message=m, sender=profiles.get(m.sender_id)) for m in messages]


# =============================================================================
# Transcript Poller
# =============================================================================


async def _join(task: asyncio.Task[Optional[list[Message]]]) -> Optional[list[Message]]:
    """Wait for a fetch without cancelling it when the caller is cancelled.

    A fetch cancelled by a chat switch yields None instead of propagating
    the cancellation into a caller that nobody cancelled.
    """
    await asyncio.wait({task})
    if task.cancelled():
        return None
    return task.result()


class TranscriptPoller:
    """Periodic transcript refresh for the active chat.

    Args:
        membership: Source of transcripts
        on_update: Handler receiving ``(event_id, messages)`` for each
            delivered refresh; may be a coroutine function
        interval: Seconds between refreshes (defaults to settings.poll_interval_seconds)
        reader_id: When given, fetches are checked for membership

    Example:
        >>> poller = TranscriptPoller(membership, on_update=show)
        >>> await poller.select("e-1")     # fetch now, then every interval
        >>> await poller.select("e-2")     # e-1 loop and fetch cancelled
        >>> await poller.close()
    """

    def __init__(
        self,
        membership: ChatMembership,
        on_update: TranscriptHandler,
        *,
        interval: Optional[float] = None,
        reader_id: Optional[str] = None,
    ) -> None:
        self.membership = membership
        self.on_update = on_update
        self.interval = interval if interval is not None else settings.poll_interval_seconds
        self.reader_id = reader_id

        self._active: Optional[str] = None
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._inflight: Optional[asyncio.Task[Optional[list[Message]]]] = None
        self._inflight_event: Optional[str] = None
        self._suspended = False
        self._closed = False

    async def __aenter__(self) -> "TranscriptPoller":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def active_event_id(self) -> Optional[str]:
        return self._active

    @property
    def is_polling(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def is_suspended(self) -> bool:
        return self._suspended

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def select(self, event_id: Optional[str]) -> None:
        """Make ``event_id`` the active chat; None stops polling.

        Work tied to the previous chat is cancelled before the new chat's
        loop starts.
        """
        if self._closed:
            raise RuntimeError("Transcript poller is closed")
        if event_id == self._active and (self.is_polling or self._suspended):
            return

        # Set first so a late response for the previous chat is seen as stale
        self._active = event_id
        await self._stop()
        if event_id is not None and not self._suspended:
            self._start()
        logger.debug(f"Active chat: {event_id}")

    @asynccontextmanager
    async def watch(self, event_id: str) -> AsyncIterator["TranscriptPoller"]:
        """Poll ``event_id`` for the duration of the block.

        Polling stops on every exit path, including errors.
        """
        await self.select(event_id)
        try:
            yield self
        finally:
            if not self._closed:
                await self.select(None)

    async def suspend(self) -> None:
        """Pause polling (view in the background) but remember the chat."""
        self._suspended = True
        await self._stop()

    async def resume(self) -> None:
        """Resume polling the remembered chat."""
        if self._closed:
            raise RuntimeError("Transcript poller is closed")
        self._suspended = False
        if self._active is not None and not self.is_polling:
            self._start()

    async def close(self) -> None:
        """Stop polling and cancel in-flight work for good."""
        if self._closed:
            return
        self._active = None
        await self._stop()
        self._closed = True

    def _start(self) -> None:
        assert self._active is not None
        self._loop_task = asyncio.create_task(
            self._run(), name=f"transcript-poll-{self._active}"
        )

    async def _stop(self) -> None:
        tasks = [t for t in (self._loop_task, self._inflight) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        # Wait for cancellation to land; results are cancellations by construction
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._inflight = None
        self._inflight_event = None

    async def _run(self) -> None:
        active_transcript_pollers.inc()
        try:
            while True:
                try:
                    await self.refresh()
                except Exception as exc:
                    errors_total.labels(error_type=type(exc).__name__, component="chat").inc()
                    logger.exception(f"❌ Transcript handler failed for {self._active}: {exc}")
                await asyncio.sleep(self.interval)
        finally:
            active_transcript_pollers.dec()

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh(self) -> Optional[list[Message]]:
        """Fetch the active transcript now.

        Joins the in-flight fetch for the same chat instead of starting a
        second one.

        Returns:
            The delivered transcript, or None when nothing was delivered
            (no active chat, fetch failed, or the chat changed meanwhile)
        """
        event_id = self._active
        if event_id is None:
            return None

        if (
            self._inflight is not None
            and not self._inflight.done()
            and self._inflight_event == event_id
        ):
            transcript_polls_total.labels(outcome="coalesced").inc()
            return await _join(self._inflight)

        task = asyncio.create_task(self._fetch(event_id), name=f"transcript-fetch-{event_id}")
        self._inflight = task
        self._inflight_event = event_id
        return await _join(task)

    async def _fetch(self, event_id: str) -> Optional[list[Message]]:
        try:
            messages = await self.membership.fetch_transcript(event_id, reader_id=self.reader_id)
        except EventNetError as exc:
            transcript_polls_total.labels(outcome="error").inc()
            errors_total.labels(error_type=type(exc).__name__, component="chat").inc()
            logger.warning(f"⚠️ Transcript refresh for {event_id} failed: {exc.message}")
            return None

        if event_id != self._active:
            transcript_polls_total.labels(outcome="stale").inc()
            logger.debug(f"Dropped stale transcript for {event_id}")
            return None

        transcript_polls_total.labels(outcome="delivered").inc()
        result = self.on_update(event_id, messages)
        if inspect.isawaitable(result):
            await result
        return messages


__all__ = ["ChatMembership", "TranscriptPoller", "TranscriptHandler", "TRANSCRIPT_ORDER"]
