"""
Query builder.

A :class:`Query` accumulates filter conditions, sort, projection and
pagination for one collection, then executes against the registry's
collection handle and wraps every returned document in an entity.

Conditions are kept as an ordered list of ``(field, value)`` pairs and are
only folded into a filter document by :meth:`Query.optimize`, which runs
before every execution.

Architecture:
    ::

        Query("users", registry)
          .equals("status", "active")        conditions: [("status", "active"),
          .greater_than("age", 18)                        ("age", {"$gt": 18}),
          .less_than("age", 65)                           ("age", {"$lt": 65})]
          .sort_by("age", ascending=False)   sort:       {"age": -1}
          .limit(10)                         limit:      10
                │
                ▼ optimize()
        {"status": "active", "age": {"$gt": 18, "$lt": 65}}
                │
                ▼ find()
        CollectionHandle.find(filter, projection, sort, limit, skip)
                │
                ▼
        Entity(collection, document, raw=True, saved=True)  (lazily, one by one)

Merge rules (optimize):
    - ``$and`` / ``$or`` / ``$nor`` entries are stored as built; later wins.
    - Operator documents on the same field are shallow-merged; later keys win.
    - Two plain values on the same field: the later one wins.
    - A plain value and an operator document on the same field raise
      :class:`~docmapper.errors.ConflictingConditionError`.

Builders are single-owner objects: do not share one between threads.

Examples:
    >>> q = Query("users", registry).greater_than("age", 18).less_than("age", 65)
    >>> q.optimize()
    {'age': {'$gt': 18, '$lt': 65}}

Tags:
    query, builder, filter, optimize, docmapper
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Any

from docmapper.errors import (
    ConflictingConditionError,
    EmptySubqueryError,
    InvalidOperatorKindError,
    NotFoundError,
    UnsupportedLogicalKindError,
)
from docmapper.logging import get_logger
from docmapper.types import ID_ALIAS, ID_FIELD, Reference, coerce_identifier

if TYPE_CHECKING:
    from docmapper.connection import ConnectionRegistry
    from docmapper.entity import Entity
    from docmapper.protocols import CollectionHandle

logger = get_logger(__name__)

OPERATOR_KINDS = frozenset({
    "in", "nin", "ne",
    "gt", "gte", "lt", "lte",
    "size", "exists", "all", "mod",
    "near", "maxDistance",
})

LOGICAL_KINDS = frozenset({"and", "or", "nor"})

# Operators whose value is a list of candidate identifiers when the field is ``id``
_LIST_ID_OPERATORS = frozenset({"in", "nin", "all"})


def _is_operator_document(value: Any) -> bool:
    return (
        isinstance(value, Mapping)
        and bool(value)
        and all(isinstance(key, str) and key.startswith("$") for key in value)
    )


class Query:
    """Builder and executor for one collection.

    Parameters:
        collection_name: Collection the query runs against.
        registry: Connection registry supplying the collection handle.
        entity_class: Class used to wrap returned documents.
    """

    def __init__(
        self,
        collection_name: str,
        registry: ConnectionRegistry,
        entity_class: type[Entity] | None = None,
    ) -> None:
        if entity_class is None:
            from docmapper.entity import Entity

            entity_class = Entity

        self.collection_name = collection_name
        self.registry = registry
        self.entity_class = entity_class

        self.conditions: list[tuple[str, Any]] = []
        self.sort: dict[str, int] = {}
        self.projection: dict[str, Any] = {}
        self.limit_count = 0
        self.skip_count = 0

    @property
    def collection(self) -> CollectionHandle:
        return self.registry.get_collection(self.collection_name)

    def __repr__(self) -> str:
        return f"Query({self.collection_name!r}, conditions={len(self.conditions)})"

    # -- Conditions ----------------------------------------------------------

    def equals(self, field: str, value: Any) -> Query:
        """Match documents where *field* equals *value*.

        ``id`` is rewritten to ``_id`` and scalar values are coerced to an
        identifier. Entities and references are matched by their reference.
        """
        if field == ID_ALIAS and not isinstance(value, Mapping | list | tuple):
            field = ID_FIELD
            value = coerce_identifier(value)

        value = self._reference_value(value)
        self.conditions.append((field, value))
        return self

    def reference(self, field: str, collection_name: str, id: Any) -> Query:
        """Match documents whose *field* references ``collection_name/id``."""
        return self.equals(field, Reference(collection_name, id))

    def operator(self, kind: str, field: str, value: Any) -> Query:
        """Append ``{field: {"$" + kind: value}}``.

        Raises:
            InvalidOperatorKindError: If *kind* is not a supported operator.
        """
        if kind not in OPERATOR_KINDS:
            raise InvalidOperatorKindError(
                f"Unsupported operator kind {kind!r}; expected one of {sorted(OPERATOR_KINDS)}"
            ).with_context(collection=self.collection_name, field=field)

        if field == ID_ALIAS:
            field = ID_FIELD
            if kind in _LIST_ID_OPERATORS:
                value = [coerce_identifier(item) for item in value]
            elif kind == "ne":
                value = coerce_identifier(value)

        self.conditions.append((field, {f"${kind}": value}))
        return self

    def in_(self, field: str, values: Any) -> Query:
        """Match documents where *field* equals one of *values*."""
        return self.operator("in", field, self._as_list(values))

    def not_in(self, field: str, values: Any) -> Query:
        """Match documents where *field* equals none of *values*."""
        return self.operator("nin", field, self._as_list(values))

    def not_equals(self, field: str, value: Any) -> Query:
        return self.operator("ne", field, self._reference_value(value))

    def greater_than(self, field: str, value: Any) -> Query:
        return self.operator("gt", field, value)

    def greater_or_equal(self, field: str, value: Any) -> Query:
        return self.operator("gte", field, value)

    def less_than(self, field: str, value: Any) -> Query:
        return self.operator("lt", field, value)

    def less_or_equal(self, field: str, value: Any) -> Query:
        return self.operator("lte", field, value)

    def range(self, field: str, start: Any, end: Any) -> Query:
        """Exclusive range: ``start < field < end``."""
        return self.operator("gt", field, start).operator("lt", field, end)

    def array_size(self, field: str, size: int) -> Query:
        return self.operator("size", field, size)

    def field_exists(self, field: str, exists: bool = True) -> Query:
        return self.operator("exists", field, exists)

    def array_contains_all(self, field: str, values: Any) -> Query:
        return self.operator("all", field, self._as_list(values))

    def modulo(self, field: str, divisor: int, remainder: int = 0) -> Query:
        return self.operator("mod", field, [divisor, remainder])

    def near(
        self, field: str, lat: float, lng: float, max_distance: float | None = None
    ) -> Query:
        """Geo proximity on a legacy coordinate pair."""
        if max_distance is not None:
            self.operator("maxDistance", field, max_distance)
        return self.operator("near", field, [lat, lng])

    def matches_pattern(self, field: str, pattern: str | re.Pattern[str], flags: int = 0) -> Query:
        """Match *field* against a regular expression."""
        if not isinstance(pattern, re.Pattern):
            pattern = re.compile(pattern, flags)
        return self.equals(field, pattern)

    def contains(self, field: str, substring: str) -> Query:
        """Case-insensitive substring match."""
        return self.matches_pattern(field, f".*{re.escape(substring)}.*", re.IGNORECASE)

    def subquery(self, kind: str, build: Callable[[Query], Any]) -> Query:
        """Add an ``and`` / ``or`` / ``nor`` group built by *build*.

        *build* receives a fresh builder on the same collection. Its
        optimized filter becomes the clause list of a single ``"$" + kind``
        condition; nothing it adds reaches this builder directly.
        A builder that adds no conditions raises :class:`EmptySubqueryError`.

        Example::

            query.subquery("or", lambda q: q.equals("role", "admin").equals("owner", True))
            # {"$or": [{"role": "admin"}, {"owner": True}]}
        """
        if kind not in LOGICAL_KINDS:
            raise UnsupportedLogicalKindError(
                f"Unsupported subquery kind {kind!r}; expected one of {sorted(LOGICAL_KINDS)}"
            ).with_context(collection=self.collection_name)

        nested = Query(self.collection_name, self.registry, entity_class=self.entity_class)
        build(nested)
        nested_filter = nested.optimize()
        if not nested_filter:
            raise EmptySubqueryError(
                f"The {kind!r} subquery on {self.collection_name} added no conditions"
            ).with_context(collection=self.collection_name, kind=kind)
        clauses = [{key: value} for key, value in nested_filter.items()]
        self.conditions.append((f"${kind}", clauses))
        return self

    # -- Projection / sort / pagination --------------------------------------

    def exclude(self, field: str) -> Query:
        """Leave *field* out of returned documents."""
        self.projection[field] = 0
        return self

    def slice(self, field: str, spec: int | list[int]) -> Query:
        """Return only part of array *field* (``n``, ``-n`` or ``[skip, n]``)."""
        self.projection[field] = {"$slice": spec}
        return self

    def sort_by(self, field: str, ascending: bool = True) -> Query:
        """Sort by a single field, replacing any previous sort."""
        self.sort = {field: 1 if ascending else -1}
        return self

    def limit(self, count: int) -> Query:
        """At most *count* results; ``0`` means no limit."""
        self.limit_count = count
        return self

    def skip(self, count: int) -> Query:
        self.skip_count = count
        return self

    # -- Optimize ------------------------------------------------------------

    def optimize(self) -> dict[str, Any]:
        """Fold the ordered conditions into an execution-ready filter."""
        filter_doc: dict[str, Any] = {}
        for field, value in self.conditions:
            if field[:1] == "$":
                filter_doc[field] = value
                continue

            if field not in filter_doc:
                filter_doc[field] = dict(value) if _is_operator_document(value) else value
                continue

            current = filter_doc[field]
            current_is_operator = _is_operator_document(current)
            value_is_operator = _is_operator_document(value)

            if current_is_operator and value_is_operator:
                current.update(value)
            elif not current_is_operator and not value_is_operator:
                filter_doc[field] = value
            else:
                raise ConflictingConditionError(
                    f"Field {field!r} mixes an equality with operator conditions"
                ).with_context(collection=self.collection_name, field=field)

        return filter_doc

    # -- Execution -----------------------------------------------------------

    def find(self) -> Iterator[Entity]:
        """Lazily yield an entity for every matching document.

        The returned iterator is single-pass.
        """
        filter_doc = self.optimize()
        logger.debug(
            "query_executed",
            collection=self.collection_name,
            filter=filter_doc,
            sort=self.sort,
            limit=self.limit_count,
            skip=self.skip_count,
        )
        documents = self.collection.find(
            filter_doc,
            self.projection or None,
            self.sort or None,
            self.limit_count,
            self.skip_count,
        )
        return (self._wrap(document) for document in documents)

    def __iter__(self) -> Iterator[Entity]:
        return self.find()

    def find_one(self) -> Entity:
        """Return the first matching entity.

        Raises:
            NotFoundError: If nothing matches.
        """
        filter_doc = self.optimize()
        document = self.collection.find_one(filter_doc, self.projection or None, self.sort or None)
        if document is None:
            raise NotFoundError(
                f"No document was found matching the query, collection is {self.collection_name}"
            ).with_context(collection=self.collection_name, operation="find_one", filter=filter_doc)
        return self._wrap(document)

    def find_by_id(self, id: Any) -> Entity:
        """Shortcut for ``equals("id", id).find_one()``."""
        return self.equals(ID_ALIAS, id).find_one()

    def count(self) -> int:
        """Count matches within the current skip/limit window."""
        return self.collection.count(self.optimize(), self.limit_count, self.skip_count)

    def count_all(self) -> int:
        """Count all matches, ignoring skip/limit."""
        return self.collection.count(self.optimize())

    def remove(self, just_one: bool = False) -> bool:
        """Delete matching documents from storage.

        Entities already built from this query are not touched.
        """
        filter_doc = self.optimize()
        removed = self.collection.remove(filter_doc, just_one)
        logger.info(
            "documents_removed",
            collection=self.collection_name,
            filter=filter_doc,
            just_one=just_one,
            acknowledged=removed,
        )
        return removed

    # -- Helpers -------------------------------------------------------------

    def _wrap(self, document: dict[str, Any]) -> Entity:
        return self.entity_class(
            self.collection_name, document, registry=self.registry, raw=True, saved=True
        )

    @staticmethod
    def _as_list(values: Any) -> list[Any]:
        if isinstance(values, str | bytes | Mapping) or not isinstance(values, Iterable):
            return [values]
        return list(values)

    @staticmethod
    def _reference_value(value: Any) -> Any:
        from docmapper.entity import Entity

        if isinstance(value, Entity):
            return value.as_reference().to_dbref()
        if isinstance(value, Reference):
            return value.to_dbref()
        return value


__all__ = ["Query", "OPERATOR_KINDS", "LOGICAL_KINDS"]
