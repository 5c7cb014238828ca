"""Data models for eventnet.

This module defines both Pydantic records (validated rows handed to the
engine) and SQLModel tables (local persistence).

Models are organized into three sections:
1. Pydantic records for store rows, plus ``parse_row`` at the boundary
2. SQLModel tables for the local SQLite store
3. View models derived by the engine for presentation
"""

from datetime import datetime
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator
from pydantic import Field as PydanticField
from sqlmodel import Field, SQLModel

from eventnet.config import (
    ConnectionStatus,
    EventFormat,
    EventType,
    RegistrationStatus,
    RelationshipState,
    Table,
)
from eventnet.errors import CollaboratorFailure
from eventnet.utils import format_iso, get_initials, new_id, parse_datetime, utc_now_iso

# =============================================================================
# Section 1: Pydantic Records
# =============================================================================


class AuthUser(BaseModel):
    """Identity returned by an auth provider.

    Attributes:
        id: User ID (same as the profile ID)
        email: Sign-in email, if known
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None


class Profile(BaseModel):
    """Public profile of a user.

    Attributes:
        id: User ID
        email: Contact email
        full_name: Display name
        avatar_url: Avatar image URL
        bio: Free-form biography
        company: Current company
        position: Job title
        linkedin_url: LinkedIn profile URL
        created_at: Creation timestamp (UTC)
        updated_at: Last update timestamp (UTC)
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    linkedin_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v)

    @property
    def display_name(self) -> str:
        return self.full_name or "Unnamed"

    @property
    def initials(self) -> str:
        return get_initials(self.full_name)


class Event(BaseModel):
    """Scheduled gathering users can register for.

    Attributes:
        id: Event ID
        title: Event title
        description: Longer description
        event_type: Kind of event
        format: Online, offline or hybrid
        date: Start timestamp (UTC)
        end_date: End timestamp (UTC)
        location: Address or meeting link
        max_participants: Capacity, None for unlimited
        image_url: Cover image URL
        created_by: ID of the creating user
        created_at: Creation timestamp (UTC)
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    description: Optional[str] = None
    event_type: EventType
    format: EventFormat
    date: datetime
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    max_participants: Optional[int] = None
    image_url: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("date", "end_date", "created_at", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v)

    @field_validator("max_participants", mode="before")
    @classmethod
    def _zero_means_unlimited(cls, v: Any) -> Any:
        """A stored capacity of 0 (or blank) means no limit."""
        if v in (0, "", "0"):
            return None
        return v


class Registration(BaseModel):
    """A user's participation record for an event."""

    model_config = ConfigDict(extra="ignore")

    id: str
    event_id: str
    user_id: str
    status: RegistrationStatus
    registered_at: Optional[datetime] = None

    @field_validator("registered_at", mode="before")
    @classmethod
    def _coerce_registered_at(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v)

    @property
    def is_active(self) -> bool:
        return self.status == RegistrationStatus.REGISTERED


class Connection(BaseModel):
    """Directed connection request between two users.

    Attributes:
        id: Connection ID
        requester_id: User who sent the request
        receiver_id: User who may respond to it
        status: pending, accepted or rejected
        created_at: When the request was sent
        updated_at: When the status last changed
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    requester_id: str
    receiver_id: str
    status: ConnectionStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.requester_id, self.receiver_id)

    def other_party(self, user_id: str) -> str:
        """ID of the user on the other end of the connection."""
        return self.receiver_id if self.requester_id == user_id else self.requester_id

    def state_for(self, viewer_id: str) -> RelationshipState:
        """Resolve the stored status into the viewer-relative state."""
        if self.status == ConnectionStatus.PENDING:
            if self.requester_id == viewer_id:
                return RelationshipState.PENDING_OUTGOING
            return RelationshipState.PENDING_INCOMING
        if self.status == ConnectionStatus.ACCEPTED:
            return RelationshipState.ACCEPTED
        return RelationshipState.REJECTED


class Message(BaseModel):
    """Chat message posted in an event's room.

    Attributes:
        id: Message ID
        event_id: Event whose chat the message belongs to
        sender_id: Author's user ID
        content: Trimmed message text
        created_at: Send timestamp (UTC)
        seq: Store insertion sequence, breaks ``created_at`` ties
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    event_id: str
    sender_id: str
    content: str
    created_at: datetime
    seq: Optional[int] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v)


class EventDraft(BaseModel):
    """User input for a new event, validated before it reaches the store.

    Raises ``pydantic.ValidationError`` on blank titles, unknown types or
    formats, an end before the start, or a non-positive capacity.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = PydanticField(min_length=1)
    description: Optional[str] = None
    event_type: EventType
    format: EventFormat
    date: datetime
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    max_participants: Optional[int] = PydanticField(default=None, ge=1)
    image_url: Optional[str] = None

    @field_validator("date", "end_date", mode="before")
    @classmethod
    def _coerce_timestamps(cls, v: Optional[str]) -> Optional[datetime]:
        return parse_datetime(v or None)

    @field_validator("max_participants", mode="before")
    @classmethod
    def _blank_means_unlimited(cls, v: Any) -> Any:
        return None if v in ("", None) else v

    @model_validator(mode="after")
    def _end_after_start(self) -> "EventDraft":
        if self.end_date is not None and self.end_date < self.date:
            raise ValueError("end_date must not be before date")
        return self

    def to_row(self, created_by: str) -> dict[str, Any]:
        """Store row for this draft, blank optionals omitted."""
        row = self.model_dump(mode="json", exclude_none=True)
        row["date"] = format_iso(self.date)
        if self.end_date is not None:
            row["end_date"] = format_iso(self.end_date)
        for key in ("description", "location", "image_url"):
            if row.get(key) == "":
                del row[key]
        row["created_by"] = created_by
        return row


RecordT = TypeVar("RecordT", bound=BaseModel)


def parse_row(model: type[RecordT], row: dict[str, Any]) -> RecordT:
    """Validate a raw store row into a record.

    Args:
        model: Record class to build
        row: Row as returned by the data store

    Returns:
        Validated record

    Raises:
        CollaboratorFailure: If the row is missing fields or carries an
            unrecognized enum variant
    """
    try:
        return model.model_validate(row)
    except ValidationError as exc:
        raise CollaboratorFailure(
            f"Store returned a malformed {model.__name__} row: {exc.errors()[0]['msg']}"
        ) from exc


def parse_rows(model: type[RecordT], rows: list[dict[str, Any]]) -> list[RecordT]:
    """Validate a list of raw rows, failing on the first malformed one."""
    return [parse_row(model, row) for row in rows]


# =============================================================================
# Section 2: SQLModel Tables
# =============================================================================


class ProfileRow(SQLModel, table=True):
    """Persisted representation of a Profile."""

    __tablename__ = Table.PROFILES.value  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    email: Optional[str] = Field(default=None, index=True)
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    linkedin_url: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: Optional[str] = Field(default_factory=utc_now_iso)


class EventRow(SQLModel, table=True):
    """Persisted representation of an Event.

    Attributes:
        date: ISO8601 UTC start timestamp (indexed, list ordering)
        created_by: FK to profiles.id
    """

    __tablename__ = Table.EVENTS.value  # type: ignore[assignment]

    id: str = Field(default_factory=new_id, primary_key=True)
    title: str
    description: Optional[str] = None
    event_type: str
    format: str
    date: str = Field(index=True)
    end_date: Optional[str] = None
    location: Optional[str] = None
    max_participants: Optional[int] = None
    image_url: Optional[str] = None
    created_by: Optional[str] = Field(default=None, foreign_key="profiles.id")
    created_at: str = Field(default_factory=utc_now_iso)


class RegistrationRow(SQLModel, table=True):
    """Persisted representation of a Registration."""

    __tablename__ = Table.REGISTRATIONS.value  # type: ignore[assignment]

    id: str = Field(default_factory=new_id, primary_key=True)
    event_id: str = Field(foreign_key="events.id", index=True)
    user_id: str = Field(foreign_key="profiles.id", index=True)
    status: str = RegistrationStatus.REGISTERED.value
    registered_at: str = Field(default_factory=utc_now_iso)


class ConnectionRow(SQLModel, table=True):
    """Persisted representation of a Connection."""

    __tablename__ = Table.CONNECTIONS.value  # type: ignore[assignment]

    id: str = Field(default_factory=new_id, primary_key=True)
    requester_id: str = Field(foreign_key="profiles.id", index=True)
    receiver_id: str = Field(foreign_key="profiles.id", index=True)
    status: str = ConnectionStatus.PENDING.value
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)


class MessageRow(SQLModel, table=True):
    """Persisted representation of a Message.

    Attributes:
        seq: Monotonic insertion sequence assigned by the store
    """

    __tablename__ = Table.MESSAGES.value  # type: ignore[assignment]

    id: str = Field(default_factory=new_id, primary_key=True)
    event_id: str = Field(foreign_key="events.id", index=True)
    sender_id: str = Field(foreign_key="profiles.id")
    content: str
    created_at: str = Field(default_factory=utc_now_iso)
    seq: Optional[int] = Field(default=None, index=True)


TABLE_MODELS: dict[Table, type[SQLModel]] = {
    Table.PROFILES: ProfileRow,
    Table.EVENTS: EventRow,
    Table.REGISTRATIONS: RegistrationRow,
    Table.CONNECTIONS: ConnectionRow,
    Table.MESSAGES: MessageRow,
}
"""SQLModel table class backing each store table."""


# =============================================================================
# Section 3: View Models
# =============================================================================


class EventView(BaseModel):
    """Event with live attendance derived for one viewer.

    Attributes:
        event: The event record
        registrations_count: Number of users actively registered
        is_registered: Whether the viewer holds an active registration
    """

    event: Event
    registrations_count: int
    is_registered: bool

    @property
    def is_full(self) -> bool:
        limit = self.event.max_participants
        return limit is not None and self.registrations_count >= limit

    @property
    def spots_left(self) -> Optional[int]:
        """Remaining capacity, None when the event is unlimited."""
        limit = self.event.max_participants
        if limit is None:
            return None
        return max(limit - self.registrations_count, 0)

    @property
    def can_register(self) -> bool:
        return not self.is_registered and not self.is_full


class ConnectionView(BaseModel):
    """Relationship between a viewer and one other user.

    Attributes:
        state: Viewer-relative relationship state
        connection: Underlying connection row, None when no row exists
        other: Profile of the other party, when resolved
    """

    state: RelationshipState
    connection: Optional[Connection] = None
    other: Optional[Profile] = None

    @property
    def connection_id(self) -> Optional[str]:
        return self.connection.id if self.connection else None


class ProfileWithConnection(BaseModel):
    """Profile annotated with its relationship to the viewer."""

    profile: Profile
    state: RelationshipState = RelationshipState.NONE
    connection_id: Optional[str] = None

    @property
    def can_request(self) -> bool:
        return self.state == RelationshipState.NONE


class TranscriptEntry(BaseModel):
    """Message joined with its sender's profile."""

    message: Message
    sender: Optional[Profile] = None


class ChatRoom(BaseModel):
    """Event chat with its current transcript."""

    event: Event
    messages: list[Message] = []


__all__ = [
    "AuthUser",
    "Profile",
    "Event",
    "Registration",
    "Connection",
    "Message",
    "EventDraft",
    "parse_row",
    "parse_rows",
    "ProfileRow",
    "EventRow",
    "RegistrationRow",
    "ConnectionRow",
    "MessageRow",
    "TABLE_MODELS",
    "EventView",
    "ConnectionView",
    "ProfileWithConnection",
    "TranscriptEntry",
    "ChatRoom",
]
