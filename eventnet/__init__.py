"""eventnet - relationship and aggregation engine for an events app.

This package derives per-entity views (event head counts, registration
state, chat membership, relationship status) from flat relational rows
and owns the connection state machine. Persistence and authentication are
collaborators: a local SQLite store or a hosted backend-as-a-service.

Example:
    >>> from eventnet import ConnectionGraph, EventCatalog, SQLiteDataStore
    >>> import asyncio
    >>>
    >>> async def main():
    ...     store = SQLiteDataStore()
    ...     store.initialize()
    ...     for view in await EventCatalog(store).list_events("u-1"):
    ...         print(view.event.title, view.registrations_count)
    ...     store.close()
    >>>
    >>> asyncio.run(main())
"""

__version__ = "0.1.0"

from eventnet.api import BackendClient, GoTrueAuthClient, RestDataStore  # noqa: E402
from eventnet.chat import ChatMembership, TranscriptPoller  # noqa: E402
from eventnet.config import settings  # noqa: E402
from eventnet.connections import ConnectionGraph  # noqa: E402
from eventnet.database import SQLiteDataStore  # noqa: E402
from eventnet.errors import (  # noqa: E402
    AlreadyRegistered,
    CollaboratorFailure,
    DuplicateRequest,
    EmptyMessage,
    EventFull,
    EventNetError,
    InvalidTransition,
    NotAMember,
    NotAuthorized,
)
from eventnet.models import (  # noqa: E402
    Connection,
    Event,
    EventView,
    Message,
    Profile,
    Registration,
)
from eventnet.registrations import EventCatalog, RegistrationAggregator  # noqa: E402
from eventnet.session import LocalAuthProvider, SessionContext  # noqa: E402

__all__ = [
    # Engine components
    "ConnectionGraph",
    "RegistrationAggregator",
    "EventCatalog",
    "ChatMembership",
    "TranscriptPoller",
    "SessionContext",
    # Collaborators
    "SQLiteDataStore",
    "LocalAuthProvider",
    "BackendClient",
    "RestDataStore",
    "GoTrueAuthClient",
    # Configuration
    "settings",
    # Records
    "Profile",
    "Event",
    "Registration",
    "Connection",
    "Message",
    "EventView",
    # Errors
    "EventNetError",
    "NotAuthorized",
    "InvalidTransition",
    "DuplicateRequest",
    "AlreadyRegistered",
    "EventFull",
    "NotAMember",
    "EmptyMessage",
    "CollaboratorFailure",
]
