"""Event registrations and the event catalog.

``RegistrationAggregator`` derives live head counts and a user's
registration state from registration rows and gates new registrations on
capacity. ``EventCatalog`` creates events and lists them with those
derived values attached.

Counts are recomputed from the store on every call; callers re-read
after ``register``/``unregister`` instead of trusting anything held
client-side.
"""

import asyncio
from typing import Any, Optional

from eventnet.config import RegistrationStatus, Table
from eventnet.errors import (
    AlreadyRegistered,
    CollaboratorFailure,
    EventFull,
    InvalidTransition,
    NotAuthorized,
)
from eventnet.interfaces import IDataStore
from eventnet.logging import logger
from eventnet.metrics import registrations_total
from eventnet.models import Event, EventDraft, EventView, Registration, parse_row, parse_rows
from eventnet.types import RegistrationData


class RegistrationAggregator:
    """Attendance counts and the capacity gate for events.

    Args:
        store: Data store holding events and registrations

    Example:
        >>> registrations = RegistrationAggregator(store)
        >>> await registrations.register("e-1", "u-2")
        >>> await registrations.registration_count_for("e-1")
        1
    """

    def __init__(self, store: IDataStore) -> None:
        self.store = store

    async def _event(self, event_id: str) -> Event:
        rows = await self.store.select(Table.EVENTS, {"id": event_id}, limit=1)
        if not rows:
            raise CollaboratorFailure(f"Event {event_id} not found")
        return parse_row(Event, rows[0])

    async def registration_count_for(self, event_id: str) -> int:
        """Number of distinct users actively registered for the event."""
        rows = await self.store.select(
            Table.REGISTRATIONS,
            {"event_id": event_id, "status": RegistrationStatus.REGISTERED.value},
        )
        return len({row["user_id"] for row in rows})

    async def is_registered(self, event_id: str, user_id: str) -> bool:
        count = await self.store.count(
            Table.REGISTRATIONS,
            {
                "event_id": event_id,
                "user_id": user_id,
                "status": RegistrationStatus.REGISTERED.value,
            },
        )
        return count > 0

    async def register(self, event_id: str, user_id: str) -> Registration:
        """Register ``user_id`` for the event.

        Raises:
            AlreadyRegistered: If the user already holds an active registration
            EventFull: If the event has reached ``max_participants``
            CollaboratorFailure: If the event does not exist
        """
        event = await self._event(event_id)
        if await self.is_registered(event_id, user_id):
            raise AlreadyRegistered("You are already registered for this event")

        if event.max_participants is not None:
            count = await self.registration_count_for(event_id)
            if count >= event.max_participants:
                raise EventFull(f"{event.title} is full ({event.max_participants} participants)")

        registration_row: RegistrationData = {
            "event_id": event_id,
            "user_id": user_id,
            "status": RegistrationStatus.REGISTERED.value,
        }
        row = await self.store.insert(Table.REGISTRATIONS, dict(registration_row))
        registration = parse_row(Registration, row)
        registrations_total.labels(action="registered").inc()
        logger.info(f"📝 {user_id} registered for event {event_id}")
        return registration

    async def unregister(self, event_id: str, user_id: str) -> int:
        """Cancel the user's registration by deleting their active rows.

        Attended records are kept. Idempotent: without an active
        registration nothing changes.

        Returns:
            Number of rows removed
        """
        removed = await self.store.delete(
            Table.REGISTRATIONS,
            {
                "event_id": event_id,
                "user_id": user_id,
                "status": RegistrationStatus.REGISTERED.value,
            },
        )
        if removed:
            registrations_total.labels(action="unregistered").inc()
            logger.info(f"📝 {user_id} unregistered from event {event_id}")
        else:
            logger.debug(f"{user_id} had no registration for event {event_id}")
        return removed

    async def mark_attended(self, event_id: str, user_id: str, *, actor_id: str) -> Registration:
        """Record that a registered user attended the event.

        Raises:
            NotAuthorized: If ``actor_id`` did not create the event
            InvalidTransition: If the user has no active registration
        """
        event = await self._event(event_id)
        if event.created_by != actor_id:
            raise NotAuthorized("Only the event creator can mark attendance")

        rows = await self.store.update(
            Table.REGISTRATIONS,
            {
                "event_id": event_id,
                "user_id": user_id,
                "status": RegistrationStatus.REGISTERED.value,
            },
            {"status": RegistrationStatus.ATTENDED.value},
        )
        if not rows:
            raise InvalidTransition("User has no active registration for this event")

        registrations_total.labels(action="attended").inc()
        logger.info(f"📝 {user_id} attended event {event_id}")
        return parse_row(Registration, rows[0])


class EventCatalog:
    """Creating and listing events.

    Args:
        store: Data store holding events and registrations
        registrations: Aggregator used for per-event derivations
    """

    def __init__(
        self,
        store: IDataStore,
        registrations: Optional[RegistrationAggregator] = None,
    ) -> None:
        self.store = store
        self.registrations = registrations or RegistrationAggregator(store)

    async def create_event(self, creator_id: str, **fields: Any) -> Event:
        """Validate and store a new event created by ``creator_id``.

        Raises:
            pydantic.ValidationError: If the fields do not form a valid event
        """
        draft = EventDraft(**fields)
        row = await self.store.insert(Table.EVENTS, draft.to_row(creator_id))
        event = parse_row(Event, row)
        logger.info(f"📅 Event {event.id} created by {creator_id}: {event.title}")
        return event

    async def get_event(self, event_id: str) -> Optional[Event]:
        rows = await self.store.select(Table.EVENTS, {"id": event_id}, limit=1)
        return parse_row(Event, rows[0]) if rows else None

    async def list_events(self, viewer_id: Optional[str] = None) -> list[EventView]:
        """All events by date, each with its head count and the viewer's state.

        Per-event counts are fetched concurrently.
        """
        rows = await self.store.select(Table.EVENTS, order=["date"])
        events = parse_rows(Event, rows)

        async def derive(event: Event) -> EventView:
            count, registered = await asyncio.gather(
                self.registrations.registration_count_for(event.id),
                self._viewer_registered(event.id, viewer_id),
            )
            return EventView(event=event, registrations_count=count, is_registered=registered)

        views = await asyncio.gather(*(derive(event) for event in events))
        logger.debug(f"Listed {len(views)} events")
        return list(views)

    async def _viewer_registered(self, event_id: str, viewer_id: Optional[str]) -> bool:
        if viewer_id is None:
            return False
        return await self.registrations.is_registered(event_id, viewer_id)


__all__ = ["RegistrationAggregator", "EventCatalog"]
