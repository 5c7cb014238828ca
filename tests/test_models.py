"""Unit tests for records, row parsing and view models."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from eventnet.config import (
    ConnectionStatus,
    EventFormat,
    EventType,
    RegistrationStatus,
    RelationshipState,
    Table,
)
from eventnet.errors import CollaboratorFailure
from eventnet.models import (
    TABLE_MODELS,
    Connection,
    ConnectionView,
    Event,
    EventDraft,
    EventView,
    Message,
    Profile,
    ProfileWithConnection,
    Registration,
    parse_row,
    parse_rows,
)


def event_row(**overrides) -> dict:
    row = {
        "id": "e-1",
        "title": "PyCon Meetup",
        "event_type": "networking",
        "format": "offline",
        "date": "2025-06-01T10:00:00Z",
        "max_participants": 10,
        "created_by": "user-ada",
        "unknown_column": "ignored",
    }
    row.update(overrides)
    return row


class TestRecords:
    """Tests for validated store records."""

    def test_event_from_row(self):
        """Test parsing an event row with timestamps and enums."""
        event = parse_row(Event, event_row())

        assert event.event_type == EventType.NETWORKING
        assert event.format == EventFormat.OFFLINE
        assert event.date == datetime(2025, 6, 1, 10, 0, tzinfo=UTC)
        assert event.max_participants == 10

    @pytest.mark.parametrize("capacity", [0, "", "0", None])
    def test_event_zero_capacity_means_unlimited(self, capacity):
        """Test that stored capacities of 0 or blank are unlimited."""
        assert parse_row(Event, event_row(max_participants=capacity)).max_participants is None

    def test_profile_display_name_and_initials(self):
        """Test profile presentation helpers."""
        profile = Profile(id="u-1", full_name="Grace Hopper")
        anonymous = Profile(id="u-2")

        assert profile.display_name == "Grace Hopper"
        assert profile.initials == "GH"
        assert anonymous.display_name == "Unnamed"
        assert anonymous.initials == "U"

    def test_registration_is_active(self):
        """Test that only registered status is active."""
        base = {"id": "r-1", "event_id": "e-1", "user_id": "u-1"}

        assert Registration(**base, status="registered").is_active
        assert not Registration(**base, status="attended").is_active
        assert not Registration(**base, status=RegistrationStatus.CANCELLED).is_active

    def test_message_requires_timestamp(self):
        """Test that messages without a send time are malformed."""
        with pytest.raises(CollaboratorFailure):
            parse_row(Message, {"id": "m-1", "event_id": "e-1", "sender_id": "u-1", "content": "hi"})


class TestConnectionState:
    """Tests for viewer-relative connection state."""

    @pytest.mark.parametrize(
        ("status", "viewer", "expected"),
        [
            (ConnectionStatus.PENDING, "a", RelationshipState.PENDING_OUTGOING),
            (ConnectionStatus.PENDING, "b", RelationshipState.PENDING_INCOMING),
            (ConnectionStatus.ACCEPTED, "a", RelationshipState.ACCEPTED),
            (ConnectionStatus.ACCEPTED, "b", RelationshipState.ACCEPTED),
            (ConnectionStatus.REJECTED, "a", RelationshipState.REJECTED),
            (ConnectionStatus.REJECTED, "b", RelationshipState.REJECTED),
        ],
    )
    def test_state_for(self, status, viewer, expected):
        """Test each stored status from both ends."""
        conn = Connection(id="c-1", requester_id="a", receiver_id="b", status=status)
        assert conn.state_for(viewer) == expected

    def test_other_party_and_involves(self):
        """Test resolving the other user of a connection."""
        conn = Connection(id="c-1", requester_id="a", receiver_id="b", status="pending")

        assert conn.other_party("a") == "b"
        assert conn.other_party("b") == "a"
        assert conn.involves("a")
        assert not conn.involves("c")


class TestParseRow:
    """Tests for validation at the store boundary."""

    def test_unknown_enum_variant_is_collaborator_failure(self):
        """Test that unrecognized status values are never silently mapped."""
        row = {"id": "c-1", "requester_id": "a", "receiver_id": "b", "status": "blocked"}

        with pytest.raises(CollaboratorFailure) as exc_info:
            parse_row(Connection, row)

        assert "Connection" in exc_info.value.message

    def test_missing_field_is_collaborator_failure(self):
        """Test that incomplete rows are rejected."""
        with pytest.raises(CollaboratorFailure):
            parse_row(Event, {"id": "e-1", "title": "No type"})

    def test_parse_rows_fails_on_first_malformed_row(self):
        """Test list parsing."""
        good = {"id": "r-1", "event_id": "e-1", "user_id": "u-1", "status": "registered"}
        bad = {**good, "id": "r-2", "status": "waitlisted"}

        assert len(parse_rows(Registration, [good, good])) == 2
        with pytest.raises(CollaboratorFailure):
            parse_rows(Registration, [good, bad])


class TestEventDraft:
    """Tests for event creation input."""

    def test_valid_draft_to_row(self):
        """Test that a draft becomes a store row with blank optionals dropped."""
        draft = EventDraft(
            title="  PyCon Meetup  ",
            event_type="workshop",
            format="hybrid",
            date="2025-06-01T10:00",
            end_date="2025-06-01T12:00",
            location="",
            max_participants="",
            description="Talks",
        )

        row = draft.to_row("user-ada")

        assert row == {
            "title": "PyCon Meetup",
            "event_type": "workshop",
            "format": "hybrid",
            "date": "2025-06-01T10:00:00Z",
            "end_date": "2025-06-01T12:00:00Z",
            "description": "Talks",
            "created_by": "user-ada",
        }

    def test_end_before_start_is_rejected(self):
        """Test the date ordering check."""
        with pytest.raises(ValidationError):
            EventDraft(
                title="Backwards",
                event_type="seminar",
                format="online",
                date="2025-06-01T10:00",
                end_date="2025-06-01T09:00",
            )

    def test_validation_error_is_a_value_error(self):
        """Test that callers can catch draft errors as ValueError."""
        with pytest.raises(ValueError):
            EventDraft(title="", event_type="seminar", format="online", date="2025-06-01")


class TestViewModels:
    """Tests for derived view models."""

    @pytest.fixture
    def event(self):
        return parse_row(Event, event_row(max_participants=2))

    def test_event_view_capacity(self, event):
        """Test spots left and full state."""
        open_view = EventView(event=event, registrations_count=1, is_registered=False)
        full_view = EventView(event=event, registrations_count=2, is_registered=False)

        assert open_view.spots_left == 1
        assert open_view.can_register
        assert full_view.is_full
        assert full_view.spots_left == 0
        assert not full_view.can_register

    def test_event_view_registered_viewer_cannot_register_again(self, event):
        """Test can_register for a registered viewer."""
        view = EventView(event=event, registrations_count=1, is_registered=True)
        assert not view.can_register

    def test_unlimited_event_view(self):
        """Test that unlimited events are never full."""
        event = parse_row(Event, event_row(max_participants=None))
        view = EventView(event=event, registrations_count=500, is_registered=False)

        assert not view.is_full
        assert view.spots_left is None

    def test_connection_view_id(self):
        """Test connection_id with and without a row."""
        conn = Connection(id="c-1", requester_id="a", receiver_id="b", status="accepted")

        assert ConnectionView(state=RelationshipState.NONE).connection_id is None
        assert ConnectionView(state=RelationshipState.ACCEPTED, connection=conn).connection_id == "c-1"

    def test_profile_with_connection_can_request(self):
        """Test that only unrelated users can be sent a request."""
        profile = Profile(id="u-1")

        assert ProfileWithConnection(profile=profile).can_request
        assert not ProfileWithConnection(
            profile=profile, state=RelationshipState.REJECTED
        ).can_request


def test_every_table_has_a_model():
    """Test the table to SQLModel mapping is complete."""
    assert set(TABLE_MODELS) == set(Table)
    assert all(model.__tablename__ == table.value for table, model in TABLE_MODELS.items())
