"""docmapper -- A lightweight object-document mapping layer for MongoDB.

Manifesto:
    Most code that talks to a document store repeats the same chores: build a
    filter document by hand, remember that ``id`` is really ``_id`` holding an
    ``ObjectId``, turn references into ``DBRef`` values and back, convert
    timestamps between local time and stored UTC, and decide whether a record
    needs an insert or an update. ``docmapper`` does those chores once.

    - **Builder, then optimize:** conditions accumulate in order and are
      folded into one filter right before execution
    - **Lazy references:** stored references become entities on first read
    - **Dirty tracking:** ``save()`` only writes when something changed
    - **Explicit context:** every query and entity is bound to a
      :class:`~docmapper.connection.ConnectionRegistry`, never to globals

Architecture::

    Layer 1 -- Errors & Types
        errors.py       Categorized error hierarchy (DocMapperError)
        types.py        Identifier / Reference / timestamp coercion
        protocols.py    CollectionHandle protocol (storage boundary)

    Layer 2 -- Storage
        connection.py   ConnectionRegistry + pymongo collection handles

    Layer 3 -- Mapping
        query.py        Query builder, optimize pass, execution
        entity.py       Entity with lazy references and dirty tracking

    Layer 4 -- Cross-Cutting Concerns
        logging.py      Structured logging (structlog)
        settings.py     DocMapperSettings (pydantic-settings)

Quick start::

    from docmapper import create_registry

    registry = create_registry("mongodb://localhost:27017", "blog")

    author = registry.entity("users", {"name": "Ada", "status": "active"})
    post = registry.entity("posts", {"title": "Hello", "author": author})
    post.save()                      # saves author first, stores a DBRef

    for user in (
        registry.query("users")
        .equals("status", "active")
        .sort_by("age", ascending=False)
        .limit(10)
    ):
        print(user["name"])

Tags:
    docmapper, odm, mongodb, query-builder, active-record
"""

from docmapper.connection import (
    ConnectionInfo,
    ConnectionRegistry,
    MongoCollectionHandle,
    create_registry,
)
from docmapper.entity import Entity
from docmapper.errors import (
    ConfigError,
    ConflictingConditionError,
    DocMapperError,
    EmptySubqueryError,
    ErrorCategory,
    ErrorContext,
    InvalidIdentifierError,
    InvalidOperatorKindError,
    NotFoundError,
    QueryBuildError,
    SaveFailedError,
    StorageError,
    UnsupportedLogicalKindError,
    ValidationError,
    categorize_error,
    is_retryable,
)
from docmapper.logging import configure_logging, configure_logging_from_settings, get_logger
from docmapper.protocols import CollectionHandle
from docmapper.query import LOGICAL_KINDS, OPERATOR_KINDS, Query
from docmapper.settings import DocMapperSettings, get_settings
from docmapper.types import ID_ALIAS, ID_FIELD, Reference, coerce_identifier

__version__ = "0.1.0"

__all__ = [
    # Storage
    "CollectionHandle",
    "ConnectionInfo",
    "ConnectionRegistry",
    "MongoCollectionHandle",
    "create_registry",
    # Mapping
    "Entity",
    "Query",
    "OPERATOR_KINDS",
    "LOGICAL_KINDS",
    # Types
    "ID_FIELD",
    "ID_ALIAS",
    "Reference",
    "coerce_identifier",
    # Errors
    "DocMapperError",
    "ErrorCategory",
    "ErrorContext",
    "NotFoundError",
    "QueryBuildError",
    "InvalidOperatorKindError",
    "UnsupportedLogicalKindError",
    "ConflictingConditionError",
    "EmptySubqueryError",
    "ValidationError",
    "InvalidIdentifierError",
    "StorageError",
    "SaveFailedError",
    "ConfigError",
    "is_retryable",
    "categorize_error",
    # Logging / settings
    "configure_logging",
    "configure_logging_from_settings",
    "get_logger",
    "DocMapperSettings",
    "get_settings",
]
