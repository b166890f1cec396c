"""
odata_engine.odata.query - Query option translation
====================================================

Validates OData system query options ($filter, $orderby, $top, $skip,
$select, $expand, $count, $search) against a pydantic model and maps
them onto a generic QueryDescriptor that the data engine understands.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional
from urllib.parse import parse_qsl

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, TypeAdapter, ValidationError, field_validator

from odata_engine.core.errors import ODataErrorCode, ODataValidationError
from odata_engine.odata.filter import FilterNode, parse_filter

# Identifier fields kept by every projection
KEY_FIELDS = ("_id", "id")

_PAGING = TypeAdapter(Optional[NonNegativeInt])


class SystemQueryOptions(BaseModel):
    """
    Decoded ``$``-prefixed query options.

    Validated by alias, so ``SystemQueryOptions.model_validate({"$top": "5"})``
    yields ``top == 5``. Unknown ``$`` options are rejected; ``$format`` is
    accepted and ignored.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    filter: Optional[str] = Field(None, alias="$filter")
    orderby: Optional[str] = Field(None, alias="$orderby")
    top: Optional[NonNegativeInt] = Field(None, alias="$top")
    skip: Optional[NonNegativeInt] = Field(None, alias="$skip")
    select: Optional[str] = Field(None, alias="$select", min_length=1)
    expand: Optional[str] = Field(None, alias="$expand")
    count: bool = Field(False, alias="$count")
    search: Optional[str] = Field(None, alias="$search")
    format: Optional[str] = Field(None, alias="$format")

    @field_validator("count", mode="before")
    @classmethod
    def _count_literal(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            if value not in ("true", "false"):
                raise ValueError("must be 'true' or 'false'")
            return value == "true"
        return value


_OPTION_CODES = {
    "$select": ODataErrorCode.INVALID_SELECT,
}


def _describe(error: Dict[str, Any]) -> str:
    option = str(error["loc"][0]) if error["loc"] else ""
    raw = error.get("input")
    if error["type"] == "extra_forbidden":
        return f"Unknown system query option {option}"
    if option in ("$top", "$skip"):
        return f"{option} must be a non-negative integer, got {raw!r}"
    if option == "$count":
        return f"$count must be 'true' or 'false', got {raw!r}"
    if option == "$select":
        return "$select must name at least one property"
    return f"{option}: {error['msg']}"


def _to_odata_error(exc: ValidationError) -> ODataValidationError:
    errors = exc.errors()
    first = errors[0]
    target = str(first["loc"][0]) if first["loc"] else None
    unknown = any(e["type"] == "extra_forbidden" for e in errors)
    details = [
        {"code": e["type"], "message": _describe(e), "target": str(e["loc"][0]) if e["loc"] else None}
        for e in errors
    ]
    return ODataValidationError(
        _OPTION_CODES.get(target or "", ODataErrorCode.INVALID_QUERY),
        "Invalid query options" if unknown or len(errors) > 1 else _describe(first),
        target=target,
        details=details if unknown or len(errors) > 1 else None,
    )


def parse_system_options(params: Mapping[str, str]) -> SystemQueryOptions:
    """
    Validate the ``$``-prefixed members of ``params``.

    Custom (non-``$``) parameters are ignored.

    Raises
    ------
    ODataValidationError
        InvalidQuery (InvalidSelect for an empty ``$select``), targeting
        the first offending option; ``details`` lists every problem when
        there is more than one or an option is unknown
    """
    options = {k: v for k, v in params.items() if k.startswith("$")}
    try:
        return SystemQueryOptions.model_validate(options)
    except ValidationError as exc:
        raise _to_odata_error(exc) from None


@dataclass(frozen=True)
class OrderBy:
    field: str
    direction: str = "asc"


@dataclass
class QueryDescriptor:
    """
    Generic query handed to the data engine.

    Attributes
    ----------
    filter : FilterNode, optional
        Boolean filter tree
    order_by : list of OrderBy
        Sort keys, most significant first
    limit : int, optional
        Maximum number of records ($top)
    offset : int, optional
        Number of records to skip ($skip)
    fields : list of str, optional
        Projection ($select)
    search : str, optional
        Full-text search term ($search)
    """

    filter: Optional[FilterNode] = None
    order_by: List[OrderBy] = field(default_factory=list)
    limit: Optional[int] = None
    offset: Optional[int] = None
    fields: Optional[List[str]] = None
    search: Optional[str] = None

    def __post_init__(self) -> None:
        _PAGING.validate_python(self.limit, strict=True)
        _PAGING.validate_python(self.offset, strict=True)

    def for_count(self) -> "QueryDescriptor":
        """Same filter and search, without paging, ordering or projection."""
        return QueryDescriptor(filter=self.filter, search=self.search)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form for remote record stores; unset members are omitted."""
        out: Dict[str, Any] = {}
        if self.filter is not None:
            out["where"] = self.filter.to_where()
        if self.order_by:
            out["orderBy"] = [{"field": o.field, "order": o.direction} for o in self.order_by]
        if self.limit is not None:
            out["limit"] = self.limit
        if self.offset is not None:
            out["offset"] = self.offset
        if self.fields:
            out["fields"] = list(self.fields)
        if self.search:
            out["search"] = self.search
        return out


def parse_query_string(query_string: str) -> Dict[str, str]:
    """
    Decode a raw query string into a dict.

    ``+`` decodes to a space. Later duplicates win.
    """
    if not query_string:
        return {}
    return {k: v for k, v in parse_qsl(query_string.lstrip("?"), keep_blank_values=True) if k}


def _split_csv(value: str) -> List[str]:
    return [s.strip() for s in value.split(",") if s.strip()]


def parse_orderby(raw: str) -> List[OrderBy]:
    """
    Parse ``$orderby``: comma-separated ``field [asc|desc]`` segments.

    >>> parse_orderby("name desc, age")
    [OrderBy(field='name', direction='desc'), OrderBy(field='age', direction='asc')]
    """
    result: List[OrderBy] = []
    for segment in _split_csv(raw):
        parts = segment.split()
        direction = parts[1].lower() if len(parts) > 1 else "asc"
        if len(parts) > 2 or direction not in ("asc", "desc"):
            raise ODataValidationError(
                ODataErrorCode.INVALID_ORDERBY,
                f"Invalid $orderby segment: {segment!r}. Expected '<property> [asc|desc]'.",
                target="$orderby",
            )
        result.append(OrderBy(parts[0], direction))
    return result


def parse_select(raw: str) -> Optional[List[str]]:
    """Split ``$select``; ``*`` selects everything and yields None."""
    fields = _split_csv(raw)
    if not fields:
        raise ODataValidationError(
            ODataErrorCode.INVALID_SELECT, "$select must name at least one property", target="$select"
        )
    return None if "*" in fields else fields


def include_fields(fields: Optional[List[str]], extra: Iterable[str]) -> Optional[List[str]]:
    """Add ``extra`` to a projection; None (everything) stays None."""
    if fields is None:
        return None
    return fields + [f for f in extra if f not in fields]


def build_query(options: SystemQueryOptions, *, enable_search: bool = True) -> QueryDescriptor:
    """Build a QueryDescriptor from validated options."""
    query = QueryDescriptor(limit=options.top, offset=options.skip)
    if options.filter:
        query.filter = parse_filter(options.filter)
    if options.orderby:
        query.order_by = parse_orderby(options.orderby)
    if options.select is not None:
        query.fields = parse_select(options.select)
    if enable_search and (options.search or "").strip():
        query.search = options.search.strip()
    return query


def translate_query_options(
    params: Mapping[str, str],
    *,
    enable_search: bool = True,
) -> QueryDescriptor:
    """
    Translate decoded query options into a QueryDescriptor.

    Parameters
    ----------
    params : mapping
        Decoded query-string key/value pairs
    enable_search : bool
        Pass ``$search`` through; ignored otherwise

    Returns
    -------
    QueryDescriptor
        The generic query

    Raises
    ------
    ODataValidationError
        InvalidQuery / InvalidFilter / InvalidOrderBy / InvalidSelect
    """
    return build_query(parse_system_options(params), enable_search=enable_search)


def project_record(record: Mapping[str, Any], fields: Optional[List[str]]) -> Dict[str, Any]:
    """
    Keep only ``fields`` of a record; identifier fields always survive.

    ``None`` means no projection.
    """
    if not fields:
        return dict(record)
    keep = set(fields) | set(KEY_FIELDS)
    return {k: v for k, v in record.items() if k in keep}
