"""
Entity: a mutable record bound to a named collection.

An :class:`Entity` wraps an ordered field map and tracks two flags:

- ``is_new``: no successful insert has happened yet
- ``is_dirty``: fields changed since construction-from-storage or the last save

Field access is where the mapping happens:

==========================  ==============================================
Stored value                ``get(field)`` returns
==========================  ==============================================
``DBRef``                   the referenced Entity, fetched once and cached
                            in place of the stored reference
naive UTC ``datetime``      an aware datetime in the entity's time zone
``list`` / ``dict``         an immutable snapshot (tuple / read-only map)
missing ``_id`` for ``id``  a freshly generated ``ObjectId`` (stored)
==========================  ==============================================

Containers are never mutated through a read. To change one, build the new
value and call :meth:`Entity.replace` (or :meth:`Entity.set`), or call
:meth:`Entity.mark_dirty` after changing a value obtained some other way.

Save state machine::

    clean ──save()──▶ clean (no write)
    dirty-new ──save()──▶ insert ──ok──▶ clean, not new
    dirty-existing ──save()──▶ replace by _id ──ok──▶ clean
    dirty-existing without _id ──save()──▶ SaveFailedError, no write
    any write not acknowledged ──▶ SaveFailedError, still dirty

Entities are single-owner objects: do not mutate one from several threads.

Tags:
    entity, active-record, lazy-loading, dirty-tracking, docmapper
"""

from __future__ import annotations

import copy
from collections.abc import Iterator, Mapping
from datetime import tzinfo
from typing import TYPE_CHECKING, Any

from bson import ObjectId, json_util

from docmapper.errors import SaveFailedError
from docmapper.logging import get_logger
from docmapper.types import (
    ID_ALIAS,
    ID_FIELD,
    Reference,
    canonical_field,
    freeze,
    is_reference,
    is_timestamp,
    normalize_field,
    resolve_timezone,
    to_display_timestamp,
)

if TYPE_CHECKING:
    from docmapper.connection import ConnectionRegistry

logger = get_logger(__name__)


class Entity:
    """A record of named fields stored in *collection_name*.

    Parameters:
        collection_name: Collection the entity belongs to.
        fields: Initial field values.
        registry: Connection registry used for persistence and reference lookups.
        raw: Fields are already in stored form (materialized from storage);
            they are taken verbatim and the entity is not new.
        saved: Start clean instead of dirty.
        timezone: Display zone for timestamps; defaults to the registry's zone.
    """

    def __init__(
        self,
        collection_name: str,
        fields: Mapping[str, Any] | None = None,
        *,
        registry: ConnectionRegistry,
        raw: bool = False,
        saved: bool = False,
        timezone: str | tzinfo | None = None,
    ) -> None:
        self._collection_name = collection_name
        self._registry = registry
        self._timezone = (
            resolve_timezone(timezone) if timezone is not None else registry.default_timezone
        )
        self._fields: dict[str, Any] = {}

        if raw:
            self._fields.update(fields or {})
        else:
            for field, value in (fields or {}).items():
                self.set(field, value)

        self._dirty = not saved
        self._new = not raw

    # -- State ---------------------------------------------------------------

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def timezone(self) -> tzinfo:
        return self._timezone

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def is_new_record(self) -> bool:
        """True until the first successful insert."""
        return self._new

    def is_saved(self) -> bool:
        """True when there are no unsaved changes."""
        return not self._dirty

    def mark_dirty(self) -> None:
        """Flag the entity as changed so the next ``save()`` writes it."""
        self._dirty = True

    # -- Field access --------------------------------------------------------

    def get(self, field: str) -> Any:
        """Return the value of *field*, resolved for display.

        Reading ``id`` on an entity without ``_id`` generates and stores a new
        identifier (and marks the entity dirty), so unsaved entities still
        have a stable reference.

        Raises:
            NotFoundError: If the field holds a reference whose target no
                longer exists.
        """
        if field == ID_ALIAS:
            if ID_FIELD not in self._fields:
                return self.set(ID_FIELD, ObjectId())
            return self._fields[ID_FIELD]

        if field not in self._fields:
            return None

        value = self._resolve(field)
        if is_timestamp(value):
            return to_display_timestamp(value, self._timezone)
        if isinstance(value, Entity):
            return value
        return freeze(value)

    def set(self, field: str, value: Any) -> Any:
        """Store *value* under *field* in canonical form and mark the entity dirty.

        Returns the stored (coerced) value.
        """
        field, value = normalize_field(field, value, self._timezone)
        self._dirty = True
        self._fields[field] = value
        return value

    def replace(self, field: str, value: Any) -> Any:
        """Explicitly swap a field's value; the way to change container fields."""
        return self.set(field, value)

    def has(self, field: str) -> bool:
        """True if *field* is set to something other than ``None``."""
        return self._fields.get(canonical_field(field)) is not None

    def remove(self, field: str) -> None:
        """Delete *field* if present."""
        field = canonical_field(field)
        if field in self._fields:
            del self._fields[field]
            self._dirty = True

    def fields(self) -> list[str]:
        """Field names in insertion order."""
        return list(self._fields)

    def __getitem__(self, field: str) -> Any:
        return self.get(field)

    def __setitem__(self, field: str, value: Any) -> None:
        self.set(field, value)

    def __delitem__(self, field: str) -> None:
        self.remove(field)

    def __contains__(self, field: object) -> bool:
        return isinstance(field, str) and self.has(field)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._fields))

    def __len__(self) -> int:
        return len(self._fields)

    def _resolve(self, field: str) -> Any:
        """Swap a stored reference for the entity it points to (memoized)."""
        value = self._fields[field]
        if not is_reference(value):
            return value

        from docmapper.query import Query

        reference = Reference.from_dbref(value)
        resolved = Query(reference.collection_name, self._registry).find_by_id(reference.id)
        self._fields[field] = resolved
        logger.debug(
            "reference_resolved",
            collection=self._collection_name,
            field=field,
            target=str(reference),
        )
        return resolved

    # -- Representations -----------------------------------------------------

    def as_reference(self) -> Reference:
        """Reference to this entity, materializing its identifier if needed."""
        return Reference(self._collection_name, self.get(ID_ALIAS))

    def as_map(self, resolve_references: bool = True) -> dict[str, Any]:
        """Plain-dict view of all fields.

        With *resolve_references*, referenced entities are fetched and
        expanded recursively; otherwise references (stored or in memory)
        are reduced to :class:`Reference` values without touching storage.
        """
        result: dict[str, Any] = {}
        for field in list(self._fields):
            if resolve_references:
                value = self._resolve(field)
            else:
                value = self._fields[field]

            if isinstance(value, Entity):
                value = value.as_map() if resolve_references else value.as_reference()
            elif is_reference(value):
                value = Reference.from_dbref(value)
            elif is_timestamp(value):
                value = to_display_timestamp(value, self._timezone)
            else:
                value = copy.deepcopy(value)
            result[field] = value
        return result

    def __str__(self) -> str:
        """Extended-JSON form of this entity's reference."""
        return json_util.dumps(self.as_reference().to_dbref())

    def __repr__(self) -> str:
        identifier = self._fields.get(ID_FIELD)
        return f"Entity({self._collection_name!r}, _id={identifier!r}, fields={len(self._fields)})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return NotImplemented
        return (
            self._collection_name == other._collection_name
            and self._fields == other._fields
        )

    __hash__ = None  # type: ignore[assignment]

    # -- Persistence ---------------------------------------------------------

    @property
    def _collection(self) -> Any:
        return self._registry.get_collection(self._collection_name)

    def save(self) -> bool:
        """Persist the entity, saving referenced entities first.

        Returns ``True``; a clean entity is not written again.

        Raises:
            SaveFailedError: If storage did not acknowledge the write, or a
                stored entity lost its ``_id`` (e.g. loaded with ``_id``
                excluded). The entity stays dirty.
        """
        return self._save(set())

    def _save(self, in_progress: set[int]) -> bool:
        if not self._dirty:
            return True

        in_progress.add(id(self))
        try:
            for field, value in list(self._fields.items()):
                if isinstance(value, Entity) and id(value) not in in_progress:
                    value._save(in_progress)

            # Built after nested saves: a reference cycle may have given this
            # entity its _id in the meantime.
            document = {
                field: value.as_reference().to_dbref() if isinstance(value, Entity) else value
                for field, value in self._fields.items()
            }

            if self._new:
                self._create(document)
            elif ID_FIELD not in self._fields:
                self._save_failed("update", "it has no _id")
            else:
                self._update(document)
        finally:
            in_progress.discard(id(self))

        self._dirty = False
        self._new = False
        logger.debug("entity_saved", collection=self._collection_name, id=str(self._fields.get(ID_FIELD)))
        return True

    def _create(self, document: dict[str, Any]) -> None:
        inserted_id = self._collection.insert(document)
        if inserted_id is None:
            self._save_failed("insert")
        self._fields[ID_FIELD] = inserted_id

    def _update(self, document: dict[str, Any]) -> None:
        if not self._collection.update({ID_FIELD: self._fields[ID_FIELD]}, document):
            self._save_failed("update")

    def _save_failed(self, operation: str, reason: str | None = None) -> None:
        logger.warning(
            "entity_save_failed", collection=self._collection_name, operation=operation, reason=reason
        )
        if reason is None:
            message = f"Storage did not acknowledge the {operation} on {self._collection_name}"
        else:
            message = f"Cannot {operation} entity in {self._collection_name}: {reason}"
        raise SaveFailedError(message).with_context(
            collection=self._collection_name, operation=operation
        )

    def delete(self) -> bool:
        """Remove the entity from storage and reset it to an empty new record.

        Any entity carrying an ``_id`` is removed by that id, including a
        fresh entity built around a known identifier. An entity without
        ``_id`` is only reset. Returns ``False`` (and keeps the entity
        unchanged) if storage did not acknowledge.
        """
        if ID_FIELD in self._fields:
            removed = self._collection.remove({ID_FIELD: self._fields[ID_FIELD]}, True)
            if not removed:
                return False
            logger.info("entity_deleted", collection=self._collection_name, id=str(self._fields[ID_FIELD]))

        self._fields = {}
        self._new = True
        self._dirty = False
        return True


__all__ = ["Entity"]
