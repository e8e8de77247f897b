"""Connection registry: one client, one cache of collection handles.

The registry is the context object every :class:`~docmapper.query.Query` and
:class:`~docmapper.entity.Entity` is bound to. It replaces process-wide state
(server URL, selected database, default time zone) with an explicitly
constructed object, so tests and concurrent callers can run with distinct
configurations side by side.

Usage
-----
::

    from docmapper.connection import create_registry

    registry = create_registry("mongodb://localhost:27017", "blog")

    users = registry.query("users").equals("status", "active").find()
    post = registry.entity("posts", {"title": "Hello"})
    post.save()

    # Tests inject an in-memory client
    import mongomock
    registry = ConnectionRegistry(client=mongomock.MongoClient(), database="test")

Design
------
- The ``MongoClient`` is created lazily on first use; an injected client is
  used as is and never closed by the registry. ``close()`` only closes a
  client the registry created itself.
- ``get_collection(name)`` is idempotent per name. Creation of the client and
  of each handle happens under a lock so concurrent first use does not build
  duplicates.
- Handles translate pymongo write results into the plain success values of
  the :class:`~docmapper.protocols.CollectionHandle` protocol. Driver errors
  are not caught.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from datetime import tzinfo
from typing import TYPE_CHECKING, Any

from pymongo import MongoClient

from docmapper.logging import configure_logging_from_settings, get_logger
from docmapper.types import resolve_timezone

if TYPE_CHECKING:
    from pymongo.collection import Collection
    from pymongo.database import Database

    from docmapper.entity import Entity
    from docmapper.query import Query
    from docmapper.settings import DocMapperSettings

logger = get_logger(__name__)


# ── ConnectionInfo ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConnectionInfo:
    """Metadata about a registry's connection."""

    url: str | None
    """Connection string, ``None`` when the client was injected."""

    database: str
    """Database selected for every collection."""

    injected: bool = False
    """Whether the client was supplied by the caller."""

    def __repr__(self) -> str:
        parts = [f"database={self.database!r}"]
        if self.injected:
            parts.append("injected=True")
        else:
            parts.append(f"url={_redact(self.url)!r}")
        return f"ConnectionInfo({', '.join(parts)})"


def _redact(url: str | None) -> str | None:
    """Hide the password part of a ``mongodb://user:pw@host`` URL."""
    if not url or "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


# ── Collection handle ────────────────────────────────────────────────────


class MongoCollectionHandle:
    """:class:`~docmapper.protocols.CollectionHandle` over a pymongo collection."""

    def __init__(self, collection: Collection) -> None:
        self._collection = collection
        self.name: str = collection.name

    @property
    def collection(self) -> Collection:
        """The wrapped pymongo collection."""
        return self._collection

    def find(
        self,
        filter: Mapping[str, Any],
        projection: Mapping[str, Any] | None = None,
        sort: Mapping[str, int] | None = None,
        limit: int = 0,
        skip: int = 0,
    ) -> Iterator[dict[str, Any]]:
        cursor = self._collection.find(dict(filter), projection or None)
        if sort:
            cursor = cursor.sort(list(sort.items()))
        if limit:
            cursor = cursor.limit(limit)
        if skip:
            cursor = cursor.skip(skip)
        return iter(cursor)

    def find_one(
        self,
        filter: Mapping[str, Any],
        projection: Mapping[str, Any] | None = None,
        sort: Mapping[str, int] | None = None,
    ) -> dict[str, Any] | None:
        kwargs: dict[str, Any] = {}
        if sort:
            kwargs["sort"] = list(sort.items())
        return self._collection.find_one(dict(filter), projection or None, **kwargs)

    def count(self, filter: Mapping[str, Any], limit: int = 0, skip: int = 0) -> int:
        kwargs: dict[str, Any] = {}
        if limit:
            kwargs["limit"] = limit
        if skip:
            kwargs["skip"] = skip
        return self._collection.count_documents(dict(filter), **kwargs)

    def insert(self, document: Mapping[str, Any]) -> Any | None:
        result = self._collection.insert_one(dict(document))
        if not result.acknowledged:
            return None
        return result.inserted_id

    def update(self, filter: Mapping[str, Any], document: Mapping[str, Any]) -> bool:
        result = self._collection.replace_one(dict(filter), dict(document))
        return bool(result.acknowledged)

    def remove(self, filter: Mapping[str, Any], just_one: bool = False) -> bool:
        if just_one:
            result = self._collection.delete_one(dict(filter))
        else:
            result = self._collection.delete_many(dict(filter))
        return bool(result.acknowledged)

    def drop(self) -> None:
        self._collection.drop()

    def __repr__(self) -> str:
        return f"MongoCollectionHandle({self.name!r})"


# ── Registry ─────────────────────────────────────────────────────────────


class ConnectionRegistry:
    """Owns one client handle and a cache of collection handles keyed by name.

    Parameters:
        url: MongoDB connection string (ignored when *client* is given).
        database: Database name used for all collections.
        client: Pre-built ``MongoClient``-compatible object.
        default_timezone: Zone entities use to display stored timestamps.
        client_options: Extra keyword arguments for ``MongoClient``.
    """

    def __init__(
        self,
        url: str | None = None,
        database: str = "docmapper",
        *,
        client: Any | None = None,
        default_timezone: str | tzinfo | None = "UTC",
        client_options: Mapping[str, Any] | None = None,
    ) -> None:
        self.info = ConnectionInfo(url=url, database=database, injected=client is not None)
        self.default_timezone: tzinfo = resolve_timezone(default_timezone)
        self._client_options = dict(client_options or {})
        self._client = client
        self._owns_client = client is None
        self._handles: dict[str, MongoCollectionHandle] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: DocMapperSettings) -> ConnectionRegistry:
        """Build a registry from validated settings.

        Logging is configured from the same settings when
        ``settings.setup_logging`` is set.
        """
        if settings.setup_logging:
            configure_logging_from_settings(settings)
        return cls(
            settings.mongodb_url,
            settings.database,
            default_timezone=settings.default_timezone,
            client_options={"serverSelectionTimeoutMS": settings.server_selection_timeout_ms},
        )

    # -- Client / database ---------------------------------------------------

    @property
    def client(self) -> Any:
        """The driver client, connecting on first access."""
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = MongoClient(self.info.url, **self._client_options)
                    logger.info("client_created", connection=repr(self.info))
        return self._client

    @property
    def database(self) -> Database:
        return self.client[self.info.database]

    # -- Collections ---------------------------------------------------------

    def get_collection(self, name: str) -> MongoCollectionHandle:
        """Return the handle for *name*, creating it once."""
        handle = self._handles.get(name)
        if handle is not None:
            return handle

        database = self.database
        with self._lock:
            handle = self._handles.get(name)
            if handle is None:
                handle = MongoCollectionHandle(database[name])
                self._handles[name] = handle
                logger.debug("collection_handle_created", collection=name)
        return handle

    def drop_collection(self, name: str) -> None:
        """Drop a collection and forget its cached handle."""
        self.get_collection(name).drop()
        with self._lock:
            self._handles.pop(name, None)
        logger.info("collection_dropped", collection=name)

    def run_command(self, command: str | Mapping[str, Any], **kwargs: Any) -> dict[str, Any]:
        """Run a database command against the selected database."""
        return self.database.command(command, **kwargs)

    # -- Factories -----------------------------------------------------------

    def query(self, collection_name: str, entity_class: type[Entity] | None = None) -> Query:
        """Start a query against *collection_name* bound to this registry."""
        from docmapper.query import Query

        if entity_class is None:
            return Query(collection_name, self)
        return Query(collection_name, self, entity_class=entity_class)

    def entity(
        self,
        collection_name: str,
        fields: Mapping[str, Any] | None = None,
        *,
        timezone: str | tzinfo | None = None,
    ) -> Entity:
        """Create a fresh, unsaved entity bound to this registry."""
        from docmapper.entity import Entity

        return Entity(collection_name, fields, registry=self, timezone=timezone)

    # -- Lifecycle -----------------------------------------------------------

    def close(self) -> None:
        """Forget cached handles and close the client if the registry created it."""
        with self._lock:
            self._handles.clear()
            if self._client is not None and self._owns_client:
                self._client.close()
                self._client = None

    def __enter__(self) -> ConnectionRegistry:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ConnectionRegistry({self.info!r})"


def create_registry(
    url: str | None = None,
    database: str | None = None,
    *,
    settings: DocMapperSettings | None = None,
    **kwargs: Any,
) -> ConnectionRegistry:
    """Create a registry from a URL/database pair or from settings.

    Explicit *url* and *database* win over the settings values. With no
    arguments at all, settings are loaded from the environment.
    Logging is configured from those settings when ``setup_logging`` is set.

    Examples
    --------
    ::

        registry = create_registry("mongodb://localhost:27017", "blog")
        registry = create_registry(settings=DocMapperSettings(database="blog"))
    """
    if settings is None and (url is None or database is None):
        from docmapper.settings import get_settings

        settings = get_settings()

    if settings is not None:
        if settings.setup_logging:
            configure_logging_from_settings(settings)
        kwargs.setdefault("default_timezone", settings.default_timezone)
        options = dict(kwargs.pop("client_options", None) or {})
        options.setdefault("serverSelectionTimeoutMS", settings.server_selection_timeout_ms)
        kwargs["client_options"] = options
        url = url or settings.mongodb_url
        database = database or settings.database

    return ConnectionRegistry(url, database, **kwargs)


__all__ = [
    "ConnectionInfo",
    "ConnectionRegistry",
    "MongoCollectionHandle",
    "create_registry",
]
