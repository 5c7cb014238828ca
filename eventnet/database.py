"""Local SQLite data store for eventnet.

This module provides a SQLite-backed implementation of ``IDataStore``:
- Connection management with WAL mode
- Generic select/insert/update/delete/count over the five tables
- Index creation for the engine's query patterns
- Monotonic ``seq`` assignment for chat messages

Example:
    >>> from eventnet.database import SQLiteDataStore
    >>> from eventnet.config import Table
    >>>
    >>> store = SQLiteDataStore()
    >>> store.initialize()
    >>> rows = await store.select(Table.EVENTS, order=["date"])
    >>> store.close()
"""

from collections.abc import Sequence
from pathlib import Path
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from eventnet.config import Table, settings
from eventnet.errors import CollaboratorFailure
from eventnet.logging import logger
from eventnet.metrics import track_store_operation
from eventnet.models import TABLE_MODELS, MessageRow
from eventnet.repository import Repository, RepositoryFactory


class SQLiteDataStore:
    """``IDataStore`` backed by a local SQLite database.

    Args:
        database_path: Path to SQLite database file (defaults to
            settings.database_path); ``:memory:`` keeps everything in process

    Example:
        >>> store = SQLiteDataStore(database_path=Path(":memory:"))
        >>> store.initialize()
        >>> row = await store.insert(Table.PROFILES, {"id": "u-1", "full_name": "Ada"})
        >>> await store.count(Table.PROFILES)
        1
    """

    def __init__(self, database_path: Path | None = None):
        self.database_path = database_path or settings.database_path
        self.engine = None
        self.session: Session | None = None
        self._repos: RepositoryFactory | None = None

    @property
    def in_memory(self) -> bool:
        return str(self.database_path) == ":memory:"

    def initialize(self) -> None:
        """Initialize database engine, create tables and indexes."""
        if self.in_memory:
            self.engine = create_engine(
                "sqlite://",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                f"sqlite:///{self.database_path}",
                echo=False,
                connect_args={"check_same_thread": False},
            )

        SQLModel.metadata.create_all(self.engine)

        if not self.in_memory:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("PRAGMA journal_mode = WAL;")
                conn.exec_driver_sql("PRAGMA synchronous = NORMAL;")
                conn.commit()

        self.create_indexes()

        self.session = Session(self.engine)
        self._repos = RepositoryFactory(self.session)
        logger.info(f"✅ Store initialized at {self.database_path}")

    def create_indexes(self) -> None:
        """Create composite indexes for the engine's hot queries.

        Indexes created:
        - Active registrations per event (head counts)
        - Registrations per user and status (chat membership)
        - Connection lookups by pair
        - Transcript ordering per event
        """
        if self.engine is None:
            raise RuntimeError("Store not initialized")

        statements = [
            "CREATE INDEX IF NOT EXISTS idx_registration_event_status "
            "ON event_registrations(event_id, status)",
            "CREATE INDEX IF NOT EXISTS idx_registration_user_status "
            "ON event_registrations(user_id, status)",
            "CREATE INDEX IF NOT EXISTS idx_connection_pair "
            "ON network_connections(requester_id, receiver_id)",
            "CREATE INDEX IF NOT EXISTS idx_message_transcript "
            "ON messages(event_id, created_at, seq)",
        ]
        with self.engine.connect() as conn:
            for statement in statements:
                conn.execute(text(statement))
            conn.commit()

        logger.debug("✅ Store indexes created")

    def close(self) -> None:
        """Close database connection and cleanup resources."""
        if self.session is not None:
            self.session.close()
            self.session = None
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _repo(self, table: Table) -> Repository[Any]:
        if self._repos is None:
            raise RuntimeError("Store not initialized")
        return self._repos.for_entity(TABLE_MODELS[Table(table)])

    def _check_columns(self, table: Table, row: dict[str, Any]) -> None:
        known = TABLE_MODELS[Table(table)].model_fields
        unknown = sorted(set(row) - set(known))
        if unknown:
            raise CollaboratorFailure(f"Unknown column(s) for {table}: {', '.join(unknown)}")

    def _fail(self, operation: str, table: Table, exc: SQLAlchemyError) -> CollaboratorFailure:
        if self.session is not None:
            self.session.rollback()
        logger.error(f"❌ Store {operation} on {table} failed: {exc}")
        return CollaboratorFailure(f"Store {operation} on {table} failed")

    # =========================================================================
    # IDataStore
    # =========================================================================

    async def select(
        self,
        table: Table,
        filters: dict[str, Any] | None = None,
        order: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch rows matching ``filters`` in ``order``."""
        with track_store_operation("select", str(table)):
            try:
                entities = self._repo(table).find_by(order=order, limit=limit, **(filters or {}))
            except SQLAlchemyError as exc:
                raise self._fail("select", table, exc) from exc
            return [entity.model_dump() for entity in entities]

    async def insert(self, table: Table, row: dict[str, Any]) -> dict[str, Any]:
        """Insert one row, filling ``id``, timestamps and message ``seq``."""
        with track_store_operation("insert", str(table)):
            self._check_columns(table, row)
            repo = self._repo(table)
            try:
                values = {key: value for key, value in row.items() if value is not None}
                if repo.model is MessageRow and "seq" not in values:
                    values["seq"] = (repo.max_of("seq") or 0) + 1
                entity = repo.create(repo.model(**values))
            except SQLAlchemyError as exc:
                raise self._fail("insert", table, exc) from exc
            logger.debug(f"Inserted {table} row {entity.id}")
            return entity.model_dump()

    async def update(
        self,
        table: Table,
        filters: dict[str, Any],
        patch: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Apply ``patch`` to rows matching ``filters``."""
        with track_store_operation("update", str(table)):
            self._check_columns(table, patch)
            try:
                entities = self._repo(table).update_where(filters, patch)
            except SQLAlchemyError as exc:
                raise self._fail("update", table, exc) from exc
            return [entity.model_dump() for entity in entities]

    async def delete(self, table: Table, filters: dict[str, Any]) -> int:
        """Delete rows matching ``filters``."""
        with track_store_operation("delete", str(table)):
            try:
                return self._repo(table).delete_where(filters)
            except SQLAlchemyError as exc:
                raise self._fail("delete", table, exc) from exc

    async def count(self, table: Table, filters: dict[str, Any] | None = None) -> int:
        """Count rows matching ``filters``."""
        with track_store_operation("count", str(table)):
            try:
                return self._repo(table).count(**(filters or {}))
            except SQLAlchemyError as exc:
                raise self._fail("count", table, exc) from exc

    # =========================================================================
    # Statistics
    # =========================================================================

    async def get_entity_counts(self) -> dict[str, int]:
        """Get row counts for all tables."""
        return {table.value: await self.count(table) for table in Table}


__all__ = ["SQLiteDataStore"]
