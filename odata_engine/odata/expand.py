"""
odata_engine.odata.expand - $expand resolution
===============================================

Parses ``$expand`` into ExpandSpec entries and embeds related records
into the result set, recursing through nested ``$expand`` options up to
a configured depth.

Cycles (``a($expand=b($expand=a))``) are not detected; the depth limit
is the only safeguard.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from odata_engine.core.errors import ODataErrorCode, ODataValidationError
from odata_engine.core.registry import ID_FIELD, DataEngine, MetadataRegistry, ObjectMetadata
from odata_engine.odata.filter import InList, and_
from odata_engine.odata.query import (
    QueryDescriptor,
    build_query,
    include_fields,
    parse_system_options,
)

logger = logging.getLogger("odata_engine.expand")


EXPAND_OPTIONS = frozenset({"$filter", "$select", "$orderby", "$top", "$skip", "$expand"})


@dataclass
class ExpandSpec:
    """
    One navigation property to expand.

    Attributes
    ----------
    property : str
        Navigation property name
    options : dict
        Nested query options, e.g. ``{"$select": "name", "$expand": "owner"}``
    """

    property: str
    options: Dict[str, str] = field(default_factory=dict)

    @property
    def nested(self) -> Optional[str]:
        return self.options.get("$expand") or None


def _invalid(message: str) -> ODataValidationError:
    return ODataValidationError(ODataErrorCode.INVALID_EXPAND, message, target="$expand")


def split_top_level(text: str, separator: str) -> List[str]:
    """
    Split ``text`` on ``separator`` outside parentheses and quoted strings.

    Raises InvalidExpand when parentheses do not balance.
    """
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    in_quotes = False
    for i, ch in enumerate(text):
        if ch == "'":
            in_quotes = not in_quotes
        elif not in_quotes:
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth < 0:
                    raise _invalid(f"Unbalanced ')' in $expand at position {i}")
            elif ch == separator and depth == 0:
                parts.append("".join(current))
                current = []
                continue
        current.append(ch)
    if depth != 0:
        raise _invalid(f"Unbalanced parentheses in $expand: {text!r}")
    if in_quotes:
        raise _invalid(f"Unclosed quoted string in $expand: {text!r}")
    parts.append("".join(current))
    return parts


def _parse_options(raw: str, prop: str) -> Dict[str, str]:
    options: Dict[str, str] = {}
    # ';' separates sub-options, like '&' in a query string
    for part in split_top_level(raw, ";"):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        key = key.strip()
        if not sep or key not in EXPAND_OPTIONS:
            raise _invalid(
                f"Unsupported $expand option {part!r} on {prop!r}. "
                f"Supported: {', '.join(sorted(EXPAND_OPTIONS))}"
            )
        options[key] = value.strip()
    return options


def parse_expand(raw: str) -> List[ExpandSpec]:
    """
    Parse an ``$expand`` value.

    >>> parse_expand("owner,orders($top=5;$expand=items)")
    [ExpandSpec(property='owner', options={}), ExpandSpec(property='orders', options={'$top': '5', '$expand': 'items'})]
    """
    specs: List[ExpandSpec] = []
    for entry in split_top_level(raw or "", ","):
        entry = entry.strip()
        if not entry:
            continue
        if "(" in entry:
            open_idx = entry.index("(")
            if not entry.endswith(")"):
                raise _invalid(f"Unexpected text after options in $expand entry {entry!r}")
            prop = entry[:open_idx].strip()
            options = _parse_options(entry[open_idx + 1:-1], prop)
        else:
            prop, options = entry, {}
        if not prop:
            raise _invalid(f"Missing navigation property in $expand entry {entry!r}")
        specs.append(ExpandSpec(prop, options))
    return specs


def build_related_query(
    ids: List[Any],
    options: Dict[str, str],
    keep: Iterable[str] = (),
) -> QueryDescriptor:
    """
    Query for related records with ``_id`` in ``ids`` plus nested options.

    A nested ``$select`` always keeps ``_id`` and the properties in ``keep``
    (the nested navigation properties still to be expanded).
    """
    query = build_query(parse_system_options(options))
    query.filter = and_(InList(ID_FIELD, tuple(ids)), query.filter)
    query.fields = include_fields(query.fields, [ID_FIELD, *keep])
    return query


def _is_key(value: Any) -> bool:
    return value is not None and isinstance(value, (str, int, float))


class ExpandOrchestrator:
    """
    Resolves ``$expand`` against the metadata registry and data engine.

    Parameters
    ----------
    registry : MetadataRegistry
        Source of relationship field definitions
    engine : DataEngine
        Record store used to fetch related records
    max_depth : int
        Recursion limit; at depth ``max_depth`` nothing more is expanded
    """

    def __init__(self, registry: MetadataRegistry, engine: DataEngine, *, max_depth: int = 3) -> None:
        self.registry = registry
        self.engine = engine
        self.max_depth = max_depth

    async def expand(
        self,
        entity_set: str,
        records: List[Dict[str, Any]],
        expand_param: Optional[str],
        depth: int = 0,
    ) -> None:
        """
        Embed related records into ``records`` in place.

        Navigation properties that are not relationship fields are skipped
        silently. The foreign key value is replaced by the related record.
        """
        if not records or not expand_param:
            return

        if depth >= self.max_depth:
            logger.debug("expand depth %s reached on %s, stopping", depth, entity_set)
            return

        specs = parse_expand(expand_param)

        metadata = self.registry.get_object_metadata(entity_set)
        if metadata is None:
            return

        for spec in specs:
            await self._expand_property(metadata, records, spec, depth)

    async def _expand_property(
        self,
        metadata: ObjectMetadata,
        records: List[Dict[str, Any]],
        spec: ExpandSpec,
        depth: int,
    ) -> None:
        fld = metadata.get_field(spec.property)
        if fld is None or not fld.is_relationship:
            logger.debug("skipping $expand of %s.%s: not a relationship", metadata.name, spec.property)
            return

        ids: List[Any] = []
        seen = set()
        for record in records:
            value = record.get(spec.property)
            if _is_key(value) and value not in seen:
                seen.add(value)
                ids.append(value)
        if not ids:
            return

        nested: List[str] = []
        if spec.nested and depth + 1 < self.max_depth:
            nested = [s.property for s in parse_expand(spec.nested)]

        target = fld.reference or ""
        related = await self.engine.find(target, build_related_query(ids, spec.options, nested))

        if spec.nested:
            await self.expand(target, related, spec.nested, depth + 1)

        related_map = {r.get(ID_FIELD): r for r in related if _is_key(r.get(ID_FIELD))}
        for record in records:
            key = record.get(spec.property)
            if _is_key(key) and key in related_map:
                record[spec.property] = related_map[key]

        logger.debug(
            "expanded %s.%s -> %s: %s of %s keys resolved (depth %s)",
            metadata.name, spec.property, target, len(related_map), len(ids), depth,
        )
