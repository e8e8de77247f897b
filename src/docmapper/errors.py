"""
Structured error types for docmapper.

Every failure raised by the mapping layer is a :class:`DocMapperError`
carrying a category, a retry hint, structured context (collection, field,
operation) and an optional chained cause. Storage-connectivity failures
raised by ``pymongo`` are NOT wrapped: they propagate unchanged so callers
can apply the driver's own retry policy.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       DocMapperError                             │
        │  (category, retryable, context, cause)                           │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  NotFoundError       QueryBuildError          ValidationError    │
        │  (NOT_FOUND)         (QUERY)                  (VALIDATION)       │
        │                         │                          │             │
        │                 InvalidOperatorKindError   InvalidIdentifierError│
        │                 UnsupportedLogicalKindError                      │
        │                 ConflictingConditionError                        │
        │                                                                  │
        │  StorageError        ConfigError                                 │
        │  (STORAGE)           (CONFIG)                                    │
        │       │                                                          │
        │  SaveFailedError                                                 │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = NotFoundError("No document matched").with_context(collection="users")
    >>> error.context.collection
    'users'
    >>> error.to_dict()["category"]
    'NOT_FOUND'

Guardrails:
    ❌ DON'T: Catch ``PyMongoError`` and re-raise it as a DocMapperError
    ✅ DO: Let connectivity failures reach the caller untouched

    ❌ DON'T: Return ``None`` from a lookup that found nothing
    ✅ DO: Raise :class:`NotFoundError`

Tags:
    error-handling, exception-hierarchy, docmapper
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NOT_FOUND = "NOT_FOUND"       # findOne / reference resolution matched nothing
    QUERY = "QUERY"               # Programmer error while building a query
    VALIDATION = "VALIDATION"     # Identifier / value coercion failures
    STORAGE = "STORAGE"           # Write acknowledgement failures
    CONFIG = "CONFIG"             # Invalid settings
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # Uncategorized errors


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        collection: Name of the collection involved
        field: Field name involved (query condition or entity field)
        operation: Operation that failed (``find_one``, ``save``, ...)
        metadata: Additional key-value pairs
    """

    collection: str | None = None
    field: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["collection", "field", "operation"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class DocMapperError(Exception):
    """
    Base exception for all docmapper errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that the
    common case needs only a message.

    Examples:
        >>> error = DocMapperError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        Chaining errors:

        >>> try:
        ...     raise ValueError("bad hex")
        ... except ValueError as e:
        ...     error = DocMapperError("Coercion failed", cause=e)
        >>> error.cause
        ValueError('bad hex')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> DocMapperError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NotFoundError("Nothing found").with_context(
                collection="users",
                operation="find_one",
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# LOOKUP ERRORS
# =============================================================================


class NotFoundError(DocMapperError):
    """
    A lookup matched zero documents.

    Raised by ``Query.find_one``, ``Query.find_by_id`` and by reference
    resolution on entity field access. Never substituted with a default.
    """

    default_category = ErrorCategory.NOT_FOUND


# =============================================================================
# QUERY CONSTRUCTION ERRORS
# =============================================================================


class QueryBuildError(DocMapperError):
    """Programmer error while building a query. Fails fast, never retryable."""

    default_category = ErrorCategory.QUERY


class InvalidOperatorKindError(QueryBuildError):
    """Operator kind is not one of the supported comparison operators."""


class UnsupportedLogicalKindError(QueryBuildError):
    """Subquery kind is not ``and``, ``or`` or ``nor``."""


class ConflictingConditionError(QueryBuildError):
    """A plain equality and an operator document target the same field."""


class EmptySubqueryError(QueryBuildError):
    """A subquery builder added no conditions."""


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(DocMapperError):
    """Value coercion error."""

    default_category = ErrorCategory.VALIDATION


class InvalidIdentifierError(ValidationError):
    """Value cannot be coerced to a document identifier."""


# =============================================================================
# STORAGE / CONFIG ERRORS
# =============================================================================


class StorageError(DocMapperError):
    """Storage acknowledged a write as failed."""

    default_category = ErrorCategory.STORAGE


class SaveFailedError(StorageError):
    """
    Create or update was not acknowledged.

    The entity is left dirty so the caller may retry or inspect it.
    """

    default_retryable = True


class ConfigError(DocMapperError):
    """Missing or invalid configuration."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, DocMapperError):
        return error.retryable
    from pymongo.errors import AutoReconnect, NetworkTimeout

    return isinstance(error, (AutoReconnect, NetworkTimeout, ConnectionError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, DocMapperError):
        return error.category
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "DocMapperError",
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
]
