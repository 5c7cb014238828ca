"""Connection graph between users.

``ConnectionGraph`` owns the connection state machine::

    pending ──respond(accepted)──> accepted
       └────respond(rejected)──> rejected

Both outcomes are terminal. A pair of users has at most one connection
row, whichever direction it was requested in, and a rejected row keeps
blocking new requests between the pair.

Every read goes back to the data store; nothing is cached between calls.
"""

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Optional

from eventnet.config import ConnectionStatus, RelationshipState, Table
from eventnet.errors import DuplicateRequest, InvalidTransition, NotAuthorized
from eventnet.interfaces import IDataStore
from eventnet.logging import logger
from eventnet.metrics import connection_transitions_total
from eventnet.models import (
    Connection,
    ConnectionView,
    Profile,
    ProfileWithConnection,
    parse_row,
    parse_rows,
)
from eventnet.types import ConnectionData
from eventnet.utils import matches_search, utc_now_iso

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

RESPONSE_OUTCOMES = frozenset({ConnectionStatus.ACCEPTED, ConnectionStatus.REJECTED})


class ConnectionGraph:
    """Pairwise connection requests and their status.

    Args:
        store: Data store holding connections and profiles

    Example:
        >>> graph = ConnectionGraph(store)
        >>> conn = await graph.request_connection("u-1", "u-2")
        >>> await graph.respond(conn.id, "accepted", actor_id="u-2")
        >>> (await graph.status_between("u-1", "u-2")).state
        <RelationshipState.ACCEPTED: 'accepted'>
    """

    def __init__(self, store: IDataStore) -> None:
        self.store = store

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _pair_connections(self, user_a: str, user_b: str) -> list[Connection]:
        """Rows for the unordered pair, newest first."""
        rows = await self.store.select(
            Table.CONNECTIONS,
            {"requester_id__in": [user_a, user_b], "receiver_id__in": [user_a, user_b]},
            order=["-created_at"],
        )
        connections = parse_rows(Connection, rows)
        return [conn for conn in connections if conn.requester_id != conn.receiver_id]

    async def _connections_of(
        self,
        user_id: str,
        status: Optional[ConnectionStatus] = None,
    ) -> list[Connection]:
        """Rows where the user is on either end, oldest first."""
        filters = {} if status is None else {"status": status}
        sent, received = await asyncio.gather(
            self.store.select(
                Table.CONNECTIONS, {"requester_id": user_id, **filters}, order=["created_at"]
            ),
            self.store.select(
                Table.CONNECTIONS, {"receiver_id": user_id, **filters}, order=["created_at"]
            ),
        )
        connections = parse_rows(Connection, sent + received)
        return sorted(connections, key=lambda c: c.created_at or EPOCH)

    async def _profiles_by_id(self, user_ids: Iterable[str]) -> dict[str, Profile]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        rows = await self.store.select(Table.PROFILES, {"id__in": ids})
        return {profile.id: profile for profile in parse_rows(Profile, rows)}

    async def _get(self, connection_id: str) -> Optional[Connection]:
        rows = await self.store.select(Table.CONNECTIONS, {"id": connection_id}, limit=1)
        return parse_row(Connection, rows[0]) if rows else None

    # =========================================================================
    # State Machine
    # =========================================================================

    async def request_connection(self, requester_id: str, receiver_id: str) -> Connection:
        """Send a connection request from ``requester_id`` to ``receiver_id``.

        Raises:
            InvalidTransition: If a user tries to connect with themselves
            DuplicateRequest: If the pair already has a pending, accepted or
                rejected connection, in either direction
        """
        if requester_id == receiver_id:
            raise InvalidTransition("You cannot connect with yourself")

        existing = await self._pair_connections(requester_id, receiver_id)
        if existing:
            status = existing[0].status
            if status == ConnectionStatus.ACCEPTED:
                raise DuplicateRequest("You are already connected")
            if status == ConnectionStatus.REJECTED:
                raise DuplicateRequest("A connection request between you was declined")
            raise DuplicateRequest("A connection request is already pending")

        request: ConnectionData = {
            "requester_id": requester_id,
            "receiver_id": receiver_id,
            "status": ConnectionStatus.PENDING.value,
        }
        row = await self.store.insert(Table.CONNECTIONS, dict(request))
        connection = parse_row(Connection, row)
        connection_transitions_total.labels(outcome="requested").inc()
        logger.info(f"🤝 Connection {connection.id} requested: {requester_id} -> {receiver_id}")
        return connection

    async def respond(
        self,
        connection_id: str,
        outcome: ConnectionStatus | str,
        *,
        actor_id: str,
    ) -> Connection:
        """Accept or reject a pending request addressed to ``actor_id``.

        The status change is conditional on the row still being pending, so
        a concurrent response surfaces as ``InvalidTransition``.

        Args:
            connection_id: Connection to respond to
            outcome: ``accepted`` or ``rejected``
            actor_id: Responding user, must be the receiver

        Raises:
            InvalidTransition: If the outcome is not accepted/rejected or the
                connection is no longer pending
            NotAuthorized: If the connection does not exist or the actor is
                not its receiver
        """
        try:
            outcome = ConnectionStatus(outcome)
        except ValueError:
            raise InvalidTransition(f"Unknown response {outcome!r}") from None
        if outcome not in RESPONSE_OUTCOMES:
            raise InvalidTransition("A connection can only be accepted or rejected")

        connection = await self._get(connection_id)
        if connection is None or connection.receiver_id != actor_id:
            raise NotAuthorized("Only the receiver can respond to this request")
        if connection.status != ConnectionStatus.PENDING:
            raise InvalidTransition(f"Connection is already {connection.status.value}")

        rows = await self.store.update(
            Table.CONNECTIONS,
            {"id": connection_id, "status": ConnectionStatus.PENDING.value},
            {"status": outcome.value, "updated_at": utc_now_iso()},
        )
        if not rows:
            raise InvalidTransition("Connection was answered in the meantime")

        connection = parse_row(Connection, rows[0])
        connection_transitions_total.labels(outcome=outcome.value).inc()
        logger.info(f"🤝 Connection {connection_id} {outcome.value} by {actor_id}")
        return connection

    # =========================================================================
    # Queries
    # =========================================================================

    async def status_between(self, user_a: str, user_b: str) -> ConnectionView:
        """Relationship between two users as seen by ``user_a``."""
        connections = await self._pair_connections(user_a, user_b)
        if not connections:
            return ConnectionView(state=RelationshipState.NONE)
        connection = connections[0]
        return ConnectionView(state=connection.state_for(user_a), connection=connection)

    async def list_pending(self, for_user: str) -> list[ConnectionView]:
        """Requests awaiting ``for_user``'s answer, oldest first."""
        rows = await self.store.select(
            Table.CONNECTIONS,
            {"receiver_id": for_user, "status": ConnectionStatus.PENDING.value},
            order=["created_at"],
        )
        connections = parse_rows(Connection, rows)
        profiles = await self._profiles_by_id(c.requester_id for c in connections)
        return [
            ConnectionView(
                state=RelationshipState.PENDING_INCOMING,
                connection=c,
                other=profiles.get(c.requester_id),
            )
            for c in connections
        ]

    async def list_accepted(self, for_user: str) -> list[ConnectionView]:
        """Accepted connections of ``for_user``, resolved to the other party."""
        connections = await self._connections_of(for_user, ConnectionStatus.ACCEPTED)
        profiles = await self._profiles_by_id(c.other_party(for_user) for c in connections)
        return [
            ConnectionView(
                state=RelationshipState.ACCEPTED,
                connection=c,
                other=profiles.get(c.other_party(for_user)),
            )
            for c in connections
        ]

    async def browse(
        self,
        for_user: str,
        search: Optional[str] = None,
    ) -> list[ProfileWithConnection]:
        """People directory: every other profile with its relationship state.

        Args:
            for_user: Viewing user (excluded from the results)
            search: Case-insensitive match on name, company or position

        Returns:
            Matching profiles ordered by name
        """
        profile_rows, connections = await asyncio.gather(
            self.store.select(Table.PROFILES, {"id__ne": for_user}, order=["full_name"]),
            self._connections_of(for_user),
        )

        # Later rows win, matching status_between's newest-first choice
        by_other = {c.other_party(for_user): c for c in connections}

        people = []
        for profile in parse_rows(Profile, profile_rows):
            if not matches_search(search, profile.full_name, profile.company, profile.position):
                continue
            connection = by_other.get(profile.id)
            people.append(
                ProfileWithConnection(
                    profile=profile,
                    state=connection.state_for(for_user) if connection else RelationshipState.NONE,
                    connection_id=connection.id if connection else None,
                )
            )
        logger.debug(f"Browse for {for_user} matched {len(people)} profiles")
        return people


__all__ = ["ConnectionGraph", "RESPONSE_OUTCOMES"]
