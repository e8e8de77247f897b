"""
Value types and coercion rules.

Stored documents only ever hold canonical BSON-ready values. This module
owns the conversions between what callers hand in and what is stored:

==================  ===============================  ==========================
Concept             Caller form                      Stored form
==================  ===============================  ==========================
Identifier          ``str`` (24 hex) / ``ObjectId``  ``bson.ObjectId``
Reference           :class:`Reference` / Entity      ``bson.DBRef``
Timestamp           aware or naive ``datetime``      naive UTC ``datetime``
                                                     (whole seconds)
==================  ===============================  ==========================

:func:`normalize_field` is the single normalize-on-write function used by
``Entity.set`` and by non-raw entity construction.

Tags:
    identifier, objectid, dbref, timestamp, coercion, docmapper
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime, tzinfo
from types import MappingProxyType
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bson import DBRef, ObjectId
from bson.errors import InvalidId

from docmapper.errors import ConfigError, InvalidIdentifierError

ID_FIELD = "_id"
ID_ALIAS = "id"


# ── Identifier ───────────────────────────────────────────────────────────


def coerce_identifier(value: Any) -> ObjectId:
    """Coerce a string or ``ObjectId`` into an ``ObjectId``.

    Raises:
        InvalidIdentifierError: If *value* is not a valid identifier.
    """
    if isinstance(value, ObjectId):
        return value
    if value is None:
        # ObjectId(None) would silently mint a fresh identifier
        raise InvalidIdentifierError("Cannot use None as a document identifier")
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as exc:
        raise InvalidIdentifierError(
            f"Cannot use {value!r} as a document identifier", cause=exc
        ) from exc


def canonical_field(field: str) -> str:
    """Map the ``id`` alias onto the stored identifier field."""
    return ID_FIELD if field == ID_ALIAS else field


def is_identifier_field(field: str) -> bool:
    return field in (ID_FIELD, ID_ALIAS)


# ── Reference ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Reference:
    """Immutable pointer to a document in another collection.

    Serializes to a ``DBRef`` so stored references can be told apart from
    ordinary embedded values.
    """

    collection_name: str
    id: ObjectId

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", coerce_identifier(self.id))

    def to_dbref(self) -> DBRef:
        return DBRef(self.collection_name, self.id)

    @classmethod
    def from_dbref(cls, dbref: DBRef) -> Reference:
        return cls(dbref.collection, dbref.id)

    def __str__(self) -> str:
        return f"{self.collection_name}/{self.id}"


def is_reference(value: Any) -> bool:
    """True if *value* is a stored reference marker."""
    return isinstance(value, DBRef)


# ── Timestamp ────────────────────────────────────────────────────────────


def resolve_timezone(zone: str | tzinfo | None) -> tzinfo:
    """Turn a zone name (or ``tzinfo``) into a ``tzinfo``; ``None`` means UTC."""
    if zone is None:
        return UTC
    if isinstance(zone, tzinfo):
        return zone
    try:
        return ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown time zone: {zone!r}", cause=exc) from exc


def to_stored_timestamp(value: datetime, zone: tzinfo = UTC) -> datetime:
    """Convert a datetime into the stored, zone-less form.

    Naive input is interpreted in *zone*. The result is a naive UTC datetime
    floored to whole seconds, also before 1970.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=zone)
    return value.astimezone(UTC).replace(tzinfo=None, microsecond=0)


def to_display_timestamp(stored: datetime, zone: tzinfo) -> datetime:
    """Zone-adjusted view of a stored timestamp. Does not modify *stored*."""
    if stored.tzinfo is None:
        stored = stored.replace(tzinfo=UTC)
    return stored.astimezone(zone)


def is_timestamp(value: Any) -> bool:
    return isinstance(value, datetime)


# ── Normalize on write ───────────────────────────────────────────────────


def normalize_field(field: str, value: Any, zone: tzinfo = UTC) -> tuple[str, Any]:
    """Coerce a caller-supplied ``(field, value)`` pair to stored form.

    - ``id`` / ``_id`` become ``_id`` holding an ``ObjectId``
    - datetimes become zone-less UTC timestamps
    - plain dates become midnight timestamps in *zone*
    - :class:`Reference` values become ``DBRef``

    Entity values are left in place: they are converted to references by
    the save path, after the nested entity has been saved.
    """
    if is_identifier_field(field):
        return ID_FIELD, coerce_identifier(value)
    if isinstance(value, datetime):
        return field, to_stored_timestamp(value, zone)
    if isinstance(value, date):
        return field, to_stored_timestamp(datetime(value.year, value.month, value.day), zone)
    if isinstance(value, Reference):
        return field, value.to_dbref()
    return field, value


def freeze(value: Any) -> Any:
    """Immutable snapshot of a stored container.

    Lists become tuples and mappings become read-only proxies, recursively.
    Other values are returned as is.
    """
    if isinstance(value, list | tuple):
        return tuple(freeze(item) for item in value)
    if isinstance(value, Mapping) and not isinstance(value, DBRef):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    return value


__all__ = [
    "ID_FIELD",
    "ID_ALIAS",
    "Reference",
    "coerce_identifier",
    "canonical_field",
    "is_identifier_field",
    "is_reference",
    "resolve_timezone",
    "to_stored_timestamp",
    "to_display_timestamp",
    "is_timestamp",
    "normalize_field",
    "freeze",
]
