"""Error taxonomy for eventnet.

Every error is locally recoverable: the caller surfaces ``message`` to the
user and may retry. No operation leaves partial state behind, since each
write is a single store call.
"""


class EventNetError(Exception):
    """Base class for all eventnet errors.

    Attributes:
        message: Human-readable description suitable for display
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotAuthorized(EventNetError):
    """The acting user may not perform the operation."""


class InvalidTransition(EventNetError):
    """The entity is not in a state that allows the requested change."""


class DuplicateRequest(EventNetError):
    """A connection already exists (or was rejected) for the user pair."""


class AlreadyRegistered(EventNetError):
    """The user already holds an active registration for the event."""


class EventFull(EventNetError):
    """The event reached its participant limit."""


class NotAMember(EventNetError):
    """The user has no active registration for the event's chat."""


class EmptyMessage(EventNetError):
    """The message content is empty after trimming whitespace."""


class CollaboratorFailure(EventNetError):
    """An external collaborator (data store, auth provider) failed.

    Raised for transport errors, HTTP error responses, database errors and
    rows that do not match the expected shape.

    Attributes:
        status_code: HTTP status code when the failure came from an HTTP response
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


__all__ = [
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
