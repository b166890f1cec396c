"""
odata_engine.core.memory - In-memory record store
==================================================

Reference collaborator implementing both MetadataRegistry and
DataEngine over plain dicts. Used by the tests, the example service and
``create_app()`` when no remote store is configured.

Usage
-----
>>> engine = InMemoryEngine()
>>> engine.register({"name": "Products", "fields": {"name": {"type": "text"}}})
>>> engine.seed("Products", [{"_id": "1", "name": "Laptop"}])
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from odata_engine.core.registry import (
    ID_FIELD,
    DataEngine,
    MetadataRegistry,
    ObjectMetadata,
)
from odata_engine.odata.filter import (
    Comparison,
    ComparisonOperator,
    FilterNode,
    InList,
    Logical,
    LogicalOperator,
    Not,
    StringFunction,
    StringFunctionName,
)
from odata_engine.odata.query import QueryDescriptor, project_record


class EngineError(Exception):
    """Base class for record store errors; ``code`` drives error mapping."""

    code = "ENGINE_ERROR"


class NotFoundError(EngineError):
    code = "NOT_FOUND"


class ValidationError(EngineError):
    code = "VALIDATION_ERROR"


_SYSTEM_FIELDS = (ID_FIELD, "id", "created_at", "updated_at")


# ---------------------------------------------------------------------------
# Filter evaluation
# ---------------------------------------------------------------------------

def _compare(op: ComparisonOperator, left: Any, right: Any) -> bool:
    if op is ComparisonOperator.EQ:
        return left == right
    if op is ComparisonOperator.NE:
        return left != right
    if left is None or right is None:
        return False
    try:
        if op is ComparisonOperator.GT:
            return left > right
        if op is ComparisonOperator.GE:
            return left >= right
        if op is ComparisonOperator.LT:
            return left < right
        return left <= right
    except TypeError:
        return False


def evaluate_filter(node: Optional[FilterNode], record: Dict[str, Any]) -> bool:
    """
    Evaluate a filter tree against one record.

    Ordering comparisons between incompatible types are false rather
    than errors.
    """
    if node is None:
        return True
    if isinstance(node, Comparison):
        return _compare(node.operator, record.get(node.field), node.value)
    if isinstance(node, Logical):
        results = (evaluate_filter(op, record) for op in node.operands)
        return all(results) if node.operator is LogicalOperator.AND else any(results)
    if isinstance(node, Not):
        return not evaluate_filter(node.operand, record)
    if isinstance(node, StringFunction):
        value = record.get(node.field)
        if not isinstance(value, str):
            return False
        if node.name is StringFunctionName.STARTSWITH:
            return value.startswith(node.argument)
        if node.name is StringFunctionName.ENDSWITH:
            return value.endswith(node.argument)
        return node.argument in value
    if isinstance(node, InList):
        return record.get(node.field) in node.values
    raise TypeError(f"Unsupported filter node: {type(node).__name__}")


def _matches_search(record: Dict[str, Any], term: Optional[str]) -> bool:
    if not term:
        return True
    needle = term.lower()
    return any(isinstance(v, str) and needle in v.lower() for v in record.values())


def _sort_key(value: Any):
    # None first, then numbers, then strings, then anything else as text
    if value is None:
        return (0, 0)
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (3, str(value))


def apply_query(records: Iterable[Dict[str, Any]], query: QueryDescriptor) -> List[Dict[str, Any]]:
    """Filter, search, order, page and project a sequence of records."""
    rows = [r for r in records if evaluate_filter(query.filter, r) and _matches_search(r, query.search)]
    for order in reversed(query.order_by):
        rows.sort(key=lambda r: _sort_key(r.get(order.field)), reverse=order.direction == "desc")
    start = query.offset or 0
    end = start + query.limit if query.limit is not None else None
    return [project_record(r, query.fields) for r in rows[start:end]]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class InMemoryEngine(MetadataRegistry, DataEngine):
    """
    Dict-backed registry and record store.

    Records get an ``_id`` (mirrored as ``id``) and ISO-8601
    ``created_at`` / ``updated_at`` stamps. Stamps have millisecond
    resolution and strictly increase across writes, so every update
    changes the record's ETag.

    Parameters
    ----------
    objects : iterable, optional
        ObjectMetadata instances or dicts to register up front
    """

    def __init__(self, objects: Optional[Iterable[Union[ObjectMetadata, Dict[str, Any]]]] = None) -> None:
        self._objects: Dict[str, ObjectMetadata] = {}
        self._records: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._last_stamp: Optional[datetime] = None
        for obj in objects or ():
            self.register(obj)

    # ---------------- registry ----------------

    def register(self, obj: Union[ObjectMetadata, Dict[str, Any]]) -> ObjectMetadata:
        meta = obj if isinstance(obj, ObjectMetadata) else ObjectMetadata.from_dict(obj)
        if not meta.name:
            raise ValueError("object type needs a name")
        self._objects[meta.name] = meta
        self._records.setdefault(meta.name, {})
        return meta

    def list_object_types(self) -> List[str]:
        return list(self._objects)

    def get_object_metadata(self, name: str) -> Optional[ObjectMetadata]:
        return self._objects.get(name)

    def seed(self, name: str, records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert records synchronously; returns the stored copies."""
        return [self._insert(name, dict(r)) for r in records]

    # ---------------- helpers ----------------

    def _table(self, name: str) -> Dict[str, Dict[str, Any]]:
        if name not in self._objects:
            raise NotFoundError(f"Object type '{name}' is not registered")
        return self._records[name]

    def _stamp(self) -> str:
        now = datetime.now(timezone.utc)
        now = now.replace(microsecond=now.microsecond // 1000 * 1000)
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + timedelta(milliseconds=1)
        self._last_stamp = now
        return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def _insert(self, name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        table = self._table(name)
        meta = self._objects[name]
        missing = [f for f, m in meta.fields.items() if m.required and data.get(f) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required field(s) on {name}: {', '.join(missing)}")

        ident = data.get(ID_FIELD, data.get("id"))
        ident = str(ident) if ident not in (None, "") else uuid.uuid4().hex
        if ident in table:
            raise ValidationError(f"Duplicate {ID_FIELD} '{ident}' in {name}")

        stamp = self._stamp()
        record = {k: v for k, v in data.items() if k not in _SYSTEM_FIELDS}
        record.update({ID_FIELD: ident, "id": ident, "created_at": stamp, "updated_at": stamp})
        table[ident] = record
        return dict(record)

    # ---------------- DataEngine ----------------

    async def find(self, name: str, query: QueryDescriptor) -> List[Dict[str, Any]]:
        return apply_query(self._table(name).values(), query)

    async def get(self, name: str, id: str) -> Optional[Dict[str, Any]]:
        record = self._table(name).get(str(id))
        return dict(record) if record is not None else None

    async def create(self, name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert(name, dict(data))

    async def update(self, name: str, id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        record = self._table(name).get(str(id))
        if record is None:
            return None
        record.update({k: v for k, v in data.items() if k not in _SYSTEM_FIELDS})
        record["updated_at"] = self._stamp()
        return dict(record)

    async def delete(self, name: str, id: str) -> bool:
        return self._table(name).pop(str(id), None) is not None

    async def count(self, name: str, query: QueryDescriptor) -> int:
        return len(apply_query(self._table(name).values(), query.for_count()))
