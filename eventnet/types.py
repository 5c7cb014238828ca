"""Type definitions for raw store rows.

TypedDict shapes of the rows that cross the data store boundary, before
they are validated into records by :func:`eventnet.models.parse_row`.
Timestamps are ISO8601 strings and enums are plain strings at this level.

Example:
    >>> from eventnet.types import RegistrationData
    >>> row: RegistrationData = {
    ...     "event_id": "e-1",
    ...     "user_id": "u-2",
    ...     "status": "registered",
    ... }
"""

from typing import Any, NotRequired, Required, TypedDict


class ProfileData(TypedDict, total=False):
    """Row of the ``profiles`` table (one per user, same id as the user)."""

    id: Required[str]
    email: NotRequired[str | None]
    full_name: NotRequired[str | None]
    avatar_url: NotRequired[str | None]
    bio: NotRequired[str | None]
    company: NotRequired[str | None]
    position: NotRequired[str | None]
    linkedin_url: NotRequired[str | None]
    created_at: NotRequired[str]
    updated_at: NotRequired[str | None]


class EventData(TypedDict, total=False):
    """Row of the ``events`` table.

    Attributes:
        event_type: One of conference, seminar, workshop, webinar, networking
        format: One of online, offline, hybrid
        date: Start timestamp
        max_participants: Optional capacity, None means unlimited
    """

    id: NotRequired[str]
    title: Required[str]
    description: NotRequired[str | None]
    event_type: Required[str]
    format: Required[str]
    date: Required[str]
    end_date: NotRequired[str | None]
    location: NotRequired[str | None]
    max_participants: NotRequired[int | None]
    image_url: NotRequired[str | None]
    created_by: Required[str]
    created_at: NotRequired[str]


class RegistrationData(TypedDict, total=False):
    """Row of the ``event_registrations`` table."""

    id: NotRequired[str]
    event_id: Required[str]
    user_id: Required[str]
    status: Required[str]
    registered_at: NotRequired[str]


class ConnectionData(TypedDict, total=False):
    """Row of the ``network_connections`` table."""

    id: NotRequired[str]
    requester_id: Required[str]
    receiver_id: Required[str]
    status: Required[str]
    created_at: NotRequired[str]
    updated_at: NotRequired[str]


class MessageData(TypedDict, total=False):
    """Row of the ``messages`` table.

    Attributes:
        seq: Store-assigned insertion sequence, used to order messages
            sharing a ``created_at`` value
    """

    id: NotRequired[str]
    event_id: Required[str]
    sender_id: Required[str]
    content: Required[str]
    created_at: NotRequired[str]
    seq: NotRequired[int | None]


Row = dict[str, Any]
"""Untyped row as returned by a data store."""

Filters = dict[str, Any]
"""Column filters, ``column`` or ``column__op`` mapped to a value."""


__all__ = [
    "ProfileData",
    "EventData",
    "RegistrationData",
    "ConnectionData",
    "MessageData",
    "Row",
    "Filters",
]
