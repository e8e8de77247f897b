"""
Canonical protocol definitions for docmapper.

The mapping layer never talks to ``pymongo`` directly: queries and entities
go through a :class:`CollectionHandle` obtained from the connection registry.
Any object with this shape works, which is how tests substitute in-memory or
mocked collections.

Architecture:
    ::

        CollectionHandle Protocol:
        ┌────────────────────────────────────────────────────────────┐
        │ find(filter, projection, sort, limit, skip) → iterator     │
        │ find_one(filter, projection, sort)     → document | None   │
        │ count(filter, limit, skip)             → int               │
        │ insert(document)                       → identifier | None │
        │ update(filter, document)               → bool              │
        │ remove(filter, just_one)               → bool              │
        │ drop()                                 → None              │
        └────────────────────────────────────────────────────────────┘

        Implementations:
        ┌────────────────────────────────────────────────────────────┐
        │ MongoCollectionHandle → pymongo.collection.Collection      │
        └────────────────────────────────────────────────────────────┘

Tags:
    protocol, collection, storage-boundary, docmapper
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class CollectionHandle(Protocol):
    """
    Minimal synchronous interface to one stored collection.

    Documents are plain mappings in canonical stored form (``ObjectId``,
    ``DBRef``, naive UTC ``datetime``). Connectivity failures are raised by
    the implementation and propagate to the caller unchanged.
    """

    name: str

    def find(
        self,
        filter: Mapping[str, Any],
        projection: Mapping[str, Any] | None = None,
        sort: Mapping[str, int] | None = None,
        limit: int = 0,
        skip: int = 0,
    ) -> Iterator[dict[str, Any]]:
        """Iterate over matching documents. ``limit=0`` means unbounded."""
        ...

    def find_one(
        self,
        filter: Mapping[str, Any],
        projection: Mapping[str, Any] | None = None,
        sort: Mapping[str, int] | None = None,
    ) -> dict[str, Any] | None:
        """Return the first matching document or ``None``."""
        ...

    def count(self, filter: Mapping[str, Any], limit: int = 0, skip: int = 0) -> int:
        """Count matching documents within the skip/limit window."""
        ...

    def insert(self, document: Mapping[str, Any]) -> Any | None:
        """Insert a document; return the generated identifier, ``None`` on failure."""
        ...

    def update(self, filter: Mapping[str, Any], document: Mapping[str, Any]) -> bool:
        """Replace the document matching *filter*; return acknowledgement."""
        ...

    def remove(self, filter: Mapping[str, Any], just_one: bool = False) -> bool:
        """Delete matching documents; return acknowledgement."""
        ...

    def drop(self) -> None:
        """Drop the whole collection."""
        ...


__all__ = ["CollectionHandle"]
