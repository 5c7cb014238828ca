"""Protocol interfaces for the engine's collaborators.

The engine never talks to a database or an HTTP backend directly: it is
handed an ``IDataStore`` and an ``IAuthProvider``. Using
``@runtime_checkable`` Protocols allows structural subtyping, so tests and
alternative backends need no inheritance.

Filter syntax:
    Filters are a mapping of ``column`` or ``column__op`` to a value, with
    ``op`` one of ``eq`` (default), ``ne``, ``in``, ``lt``, ``lte``,
    ``gt``, ``gte``. All filters are AND-ed.

    >>> {"event_id": "e-1", "status": "registered"}
    >>> {"id__in": ["e-1", "e-2"]}
    >>> {"id__ne": "u-1"}

Ordering:
    A sequence of column names; a leading ``-`` sorts descending.

    >>> ["date"]
    >>> ["created_at", "seq"]
"""

from collections.abc import Awaitable, Callable, Sequence
from enum import StrEnum
from typing import Protocol, runtime_checkable

from eventnet.config import Table
from eventnet.models import AuthUser
from eventnet.types import Filters, Row

FILTER_OPERATORS = frozenset({"eq", "ne", "in", "lt", "lte", "gt", "gte"})


def split_filter_key(key: str) -> tuple[str, str]:
    """Split ``column__op`` into ``(column, op)``.

    Raises:
        ValueError: If the operator is not supported

    Example:
        >>> split_filter_key("id__in")
        ('id', 'in')
        >>> split_filter_key("status")
        ('status', 'eq')
    """
    column, sep, op = key.rpartition("__")
    if not sep:
        return key, "eq"
    if op not in FILTER_OPERATORS:
        raise ValueError(f"Unsupported filter operator: {op!r}")
    return column, op


def split_order_key(key: str) -> tuple[str, bool]:
    """Split an order entry into ``(column, descending)``."""
    if key.startswith("-"):
        return key[1:], True
    return key, False


@runtime_checkable
class IDataStore(Protocol):
    """Relational data store interface.

    Implementations should:
    - Generate ``id`` and creation timestamps for inserted rows when absent
    - Return rows as plain dictionaries
    - Wrap every transport or database error in ``CollaboratorFailure``
    """

    async def select(
        self,
        table: Table,
        filters: Filters | None = None,
        order: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[Row]:
        """Fetch rows matching ``filters`` in ``order``."""
        ...

    async def insert(self, table: Table, row: Row) -> Row:
        """Insert one row and return it as stored."""
        ...

    async def update(
        self,
        table: Table,
        filters: Filters,
        patch: Row,
    ) -> list[Row]:
        """Apply ``patch`` to rows matching ``filters``; return updated rows."""
        ...

    async def delete(self, table: Table, filters: Filters) -> int:
        """Delete rows matching ``filters``; return how many were removed."""
        ...

    async def count(self, table: Table, filters: Filters | None = None) -> int:
        """Count rows matching ``filters`` without fetching them."""
        ...


class AuthEvent(StrEnum):
    """Auth state change notifications."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


AuthListener = Callable[[AuthEvent, AuthUser | None], Awaitable[None]]
"""Coroutine called with each auth event and the user it concerns."""


class AuthNotifier:
    """Listener bookkeeping shared by auth provider implementations."""

    def __init__(self) -> None:
        self._listeners: list[AuthListener] = []

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self, event: AuthEvent, user: AuthUser | None) -> None:
        for listener in list(self._listeners):
            await listener(event, user)


@runtime_checkable
class IAuthProvider(Protocol):
    """Authentication collaborator interface.

    Treated as a black box that yields the current user's identity.
    Implementations notify subscribed listeners on every state change.
    """

    async def current_user(self) -> AuthUser | None:
        """Return the signed-in user, or None."""
        ...

    async def sign_in(self, email: str, password: str) -> AuthUser:
        """Sign in with email and password."""
        ...

    async def sign_up(self, email: str, password: str, full_name: str) -> AuthUser:
        """Create an account; the profile row is created alongside."""
        ...

    async def sign_out(self) -> None:
        """End the current session."""
        ...

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        ...


__all__ = [
    "FILTER_OPERATORS",
    "split_filter_key",
    "split_order_key",
    "IDataStore",
    "IAuthProvider",
    "AuthEvent",
    "AuthListener",
    "AuthNotifier",
]
