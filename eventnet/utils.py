"""Utility functions for eventnet.

This module provides common helper functions for datetime handling,
identifier generation and profile text matching.
"""

import uuid
from datetime import UTC, datetime

from dateutil import parser as dateutil_parser  # type: ignore[import-untyped]


def parse_datetime(value: str | datetime | None) -> datetime | None:
    """Parse ISO8601 timestamp string into timezone-aware UTC datetime.

    Naive values (such as ``2025-06-01T10:00`` from a datetime-local form
    field) are interpreted as UTC.

    Args:
        value: ISO8601 timestamp string, datetime object, or None

    Returns:
        Parsed timezone-aware datetime in UTC, or None if input is None

    Raises:
        ValueError: If timestamp format is invalid

    Example:
        >>> dt = parse_datetime("2024-01-15T10:30:00Z")
        >>> dt.tzinfo
        datetime.timezone.utc
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    dt = dateutil_parser.isoparse(value)

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def utc_now() -> datetime:
    """Get current UTC timestamp as timezone-aware datetime."""
    return datetime.now(UTC)


def utc_now_iso() -> str:
    """Get current UTC timestamp as ISO8601 string with 'Z' suffix.

    Always carries microseconds so stored timestamps sort lexicographically.

    Example:
        >>> utc_now_iso().endswith("Z")
        True
    """
    return utc_now().isoformat(timespec="microseconds").replace("+00:00", "Z")


def format_iso(dt: datetime | None) -> str | None:
    """Format datetime as ISO8601 string with 'Z' suffix.

    Example:
        >>> from datetime import UTC
        >>> format_iso(datetime(2024, 1, 15, 10, 30, tzinfo=UTC))
        '2024-01-15T10:30:00Z'
    """
    if dt is None:
        return None
    return dt.isoformat().replace("+00:00", "Z")


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return uuid.uuid4().hex


def get_initials(name: str | None, fallback: str = "U") -> str:
    """Build avatar initials from a display name.

    Example:
        >>> get_initials("ada lovelace")
        'AL'
        >>> get_initials(None)
        'U'
    """
    if not name or not name.strip():
        return fallback
    return "".join(word[0] for word in name.split()).upper()


def matches_search(term: str | None, *fields: str | None) -> bool:
    """Case-insensitive substring match of ``term`` against any field.

    An empty or missing term matches everything.

    Example:
        >>> matches_search("acme", "Jane Doe", "ACME Corp", None)
        True
    """
    if not term or not term.strip():
        return True
    needle = term.strip().casefold()
    return any(field and needle in field.casefold() for field in fields)
