"""Pytest configuration and shared fixtures for eventnet tests."""

import os
import sys
import tempfile
from pathlib import Path

# Must be set before eventnet builds its settings at import time
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="eventnet-tests-"))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from loguru import logger  # noqa: E402

from eventnet.chat import ChatMembership  # noqa: E402
from eventnet.config import EventFormat, EventType, Table  # noqa: E402
from eventnet.connections import ConnectionGraph  # noqa: E402
from eventnet.database import SQLiteDataStore  # noqa: E402
from eventnet.registrations import EventCatalog, RegistrationAggregator  # noqa: E402

# =============================================================================
# Test Configuration
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_loguru():
    """Reset loguru handlers before each test to prevent I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
    )
    yield
    logger.remove()


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def store():
    """Initialized in-memory SQLite store."""
    data_store = SQLiteDataStore(database_path=Path(":memory:"))
    data_store.initialize()
    yield data_store
    data_store.close()


@pytest.fixture
def file_store(tmp_path: Path):
    """Initialized SQLite store backed by a temporary file."""
    data_store = SQLiteDataStore(database_path=tmp_path / "eventnet.db")
    data_store.initialize()
    yield data_store
    data_store.close()


@pytest_asyncio.fixture
async def users(store: SQLiteDataStore) -> dict[str, str]:
    """Four seeded profiles, keyed by short name."""
    seeded = {
        "ada": ("Ada Lovelace", "Analytical Engines", "Mathematician"),
        "grace": ("Grace Hopper", "US Navy", "Rear Admiral"),
        "alan": ("Alan Turing", "Bletchley Park", "Cryptanalyst"),
        "linus": ("Linus Torvalds", "Linux Foundation", "Fellow"),
    }
    ids = {}
    for key, (name, company, position) in seeded.items():
        row = await store.insert(
            Table.PROFILES,
            {
                "id": f"user-{key}",
                "full_name": name,
                "company": company,
                "position": position,
                "email": f"{key}@example.com",
            },
        )
        ids[key] = row["id"]
    return ids


@pytest.fixture
def graph(store: SQLiteDataStore) -> ConnectionGraph:
    return ConnectionGraph(store)


@pytest.fixture
def registrations(store: SQLiteDataStore) -> RegistrationAggregator:
    return RegistrationAggregator(store)


@pytest.fixture
def catalog(store: SQLiteDataStore, registrations: RegistrationAggregator) -> EventCatalog:
    return EventCatalog(store, registrations)


@pytest.fixture
def membership(store: SQLiteDataStore, registrations: RegistrationAggregator) -> ChatMembership:
    return ChatMembership(store, registrations)


@pytest.fixture
def event_fields() -> dict:
    """Valid fields for EventCatalog.create_event."""
    return {
        "title": "PyCon Meetup",
        "event_type": EventType.NETWORKING,
        "format": EventFormat.OFFLINE,
        "date": "2025-06-01T10:00",
        "location": "Berlin",
    }
