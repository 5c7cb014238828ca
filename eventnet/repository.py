"""Generic repository pattern for type-safe database operations.

This module provides a Generic Repository[T] implementation for SQLModel
entities, with operator filters (``column__op``) and multi-column ordering.

Reference:
    - Repository Pattern: https://martinfowler.com/eaaCatalog/repository.html

Example:
    >>> from eventnet.repository import Repository
    >>> from eventnet.models import EventRow
    >>> from sqlmodel import Session
    >>>
    >>> event_repo = Repository[EventRow](session, EventRow)
    >>> upcoming = event_repo.find_by(order=["date"], date__gte="2025-01-01")
    >>> for event in upcoming:
    ...     print(event.title)
"""

from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import func
from sqlmodel import Session, SQLModel, col, select

from eventnet.interfaces import split_filter_key, split_order_key

# =============================================================================
# Type Variables
# =============================================================================

T = TypeVar("T", bound=SQLModel)


# =============================================================================
# Generic Repository
# =============================================================================


class Repository(Generic[T]):
    """Generic repository implementation for SQLModel entities.

    Type Parameter:
        T: SQLModel entity type (EventRow, MessageRow, ...)

    Args:
        session: SQLModel Session instance
        model: SQLModel class

    Example:
        >>> repo = Repository[ConnectionRow](session, ConnectionRow)
        >>> pending = repo.find_by(receiver_id="u-1", status="pending")
        >>> repo.update_where({"id": pending[0].id}, {"status": "accepted"})
    """

    def __init__(self, session: Session, model: type[T]):
        """Initialize repository.

        Args:
            session: SQLModel Session for database operations
            model: SQLModel table class
        """
        self.session = session
        self.model = model

    def _column(self, name: str) -> Any:
        if name not in self.model.model_fields:
            raise ValueError(f"{self.model.__name__} has no column {name!r}")
        return col(getattr(self.model, name))

    def _where(self, stmt: Any, filters: dict[str, Any]) -> Any:
        """Apply ``column__op`` filters to a statement."""
        for key, value in filters.items():
            name, op = split_filter_key(key)
            column = self._column(name)
            if op == "eq":
                stmt = stmt.where(column.is_(None) if value is None else column == value)
            elif op == "ne":
                stmt = stmt.where(column.is_not(None) if value is None else column != value)
            elif op == "in":
                stmt = stmt.where(column.in_(list(value)))
            elif op == "lt":
                stmt = stmt.where(column < value)
            elif op == "lte":
                stmt = stmt.where(column <= value)
            elif op == "gt":
                stmt = stmt.where(column > value)
            elif op == "gte":
                stmt = stmt.where(column >= value)
        return stmt

    def create(self, entity: T) -> T:
        """Create new entity.

        Returns:
            Created entity with refreshed state from database
        """
        self.session.add(entity)
        self.session.commit()
        self.session.refresh(entity)
        return entity

    def find_by(
        self,
        order: Sequence[str] | None = None,
        limit: int | None = None,
        **filters: Any,
    ) -> Sequence[T]:
        """Find entities matching filters.

        Args:
            order: Column names to sort by; a leading ``-`` sorts descending
            limit: Maximum number of results
            **filters: ``column`` or ``column__op`` keyword filters

        Returns:
            Sequence of matching entities

        Example:
            >>> repo.find_by(event_id="e-1", order=["created_at", "seq"])
            >>> repo.find_by(id__in=["e-1", "e-2"], order=["date"])
        """
        stmt = self._where(select(self.model), filters)
        for key in order or ():
            name, descending = split_order_key(key)
            column = self._column(name)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def update_where(self, filters: dict[str, Any], patch: dict[str, Any]) -> list[T]:
        """Apply ``patch`` to every entity matching ``filters``.

        Returns:
            Updated entities with refreshed state
        """
        for name in patch:
            self._column(name)
        entities = list(self.find_by(**filters))
        for entity in entities:
            for key, value in patch.items():
                setattr(entity, key, value)
            self.session.add(entity)
        self.session.commit()
        for entity in entities:
            self.session.refresh(entity)
        return entities

    def delete_where(self, filters: dict[str, Any]) -> int:
        """Delete every entity matching ``filters``.

        Returns:
            Number of entities deleted
        """
        entities = list(self.find_by(**filters))
        for entity in entities:
            self.session.delete(entity)
        self.session.commit()
        return len(entities)

    def count(self, **filters: Any) -> int:
        """Count entities matching filters (all entities when none given)."""
        stmt = self._where(select(func.count()).select_from(self.model), filters)
        return self.session.exec(stmt).one()

    def max_of(self, column: str) -> Any:
        """Largest value of ``column``, or None for an empty table."""
        stmt = select(func.max(self._column(column)))
        return self.session.exec(stmt).one()


# =============================================================================
# Repository Factory Helper
# =============================================================================


class RepositoryFactory:
    """Factory for creating type-safe repositories.

    Example:
        >>> factory = RepositoryFactory(session)
        >>> event_repo = factory.for_entity(EventRow)
    """

    def __init__(self, session: Session):
        self.session = session

    def for_entity(self, model: type[T]) -> Repository[T]:
        """Create repository for specific entity type."""
        return Repository[T](self.session, model)


__all__ = ["Repository", "RepositoryFactory"]
