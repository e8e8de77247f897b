"""
Shared pytest fixtures and configuration for docmapper tests.

This module provides:
- A registry bound to an in-memory mongomock client (test isolation)
- A seeded ``users`` collection for query tests
- Settings cache cleanup between tests

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments.

    def test_something(registry, seeded_users):
        ...
"""

import sys
from collections.abc import Generator
from pathlib import Path

import mongomock
import pytest

# Ensure docmapper package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from docmapper.connection import ConnectionRegistry
from docmapper.settings import clear_settings_cache


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_settings_cache() -> Generator[None, None, None]:
    """Drop cached settings before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Storage Fixtures
# =============================================================================


@pytest.fixture
def mongo_client() -> mongomock.MongoClient:
    """In-memory pymongo-compatible client."""
    return mongomock.MongoClient()


@pytest.fixture
def registry(mongo_client) -> Generator[ConnectionRegistry, None, None]:
    """Registry bound to a fresh in-memory database."""
    reg = ConnectionRegistry(client=mongo_client, database="docmapper_test")
    yield reg
    reg.close()


@pytest.fixture
def users_collection(mongo_client):
    """Raw mongomock collection behind the ``users`` handle."""
    return mongo_client["docmapper_test"]["users"]


@pytest.fixture
def seeded_users(users_collection) -> list[dict]:
    """
    Twenty users: fifteen active adults aged 20..34 and five that must never
    match an ``active`` / ``18 < age < 65`` filter.
    """
    documents = [
        {"name": f"active-{age}", "status": "active", "age": age}
        for age in range(20, 35)
    ]
    documents += [
        {"name": "inactive-40", "status": "inactive", "age": 40},
        {"name": "inactive-50", "status": "inactive", "age": 50},
        {"name": "minor", "status": "active", "age": 16},
        {"name": "exactly-18", "status": "active", "age": 18},
        {"name": "retired", "status": "active", "age": 70},
    ]
    result = users_collection.insert_many(documents)
    for document, inserted_id in zip(documents, result.inserted_ids):
        document["_id"] = inserted_id
    return documents
