"""
odata_engine.odata.etag - Entity tags and preconditions
========================================================

Weak ETags for optimistic concurrency:

1. ``updated_at`` present -> ``W/"<epoch milliseconds>"``
2. else an identifier     -> ``W/"<id>"``
3. else                   -> ``W/"<rolling hash of the JSON body>"``

Two reads of an unmodified entity always yield the same tag.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from odata_engine.core.errors import ODataErrorCode, ODataValidationError

TIMESTAMP_FIELD = "updated_at"
ID_FIELDS = ("_id", "id")

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def simple_hash(text: str) -> str:
    """
    32-bit rolling hash (``h = h * 31 + c``), absolute value in base 36.

    >>> simple_hash("")
    '0'
    """
    h = 0
    for ch in text:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def _timestamp_millis(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def compute_etag(entity: Dict[str, Any]) -> str:
    """
    Derive a weak ETag for an entity.

    Parameters
    ----------
    entity : dict
        Record as returned by the data engine

    Returns
    -------
    str
        Weak entity tag, e.g. ``W/"1700000000000"``
    """
    millis = _timestamp_millis(entity.get(TIMESTAMP_FIELD))
    if millis is not None:
        return f'W/"{millis}"'

    for key in ID_FIELDS:
        ident = entity.get(key)
        if ident is not None and ident != "":
            return f'W/"{ident}"'

    content = json.dumps(entity, separators=(",", ":"), default=str)
    return f'W/"{simple_hash(content)}"'


def _candidates(header: str):
    return [t.strip() for t in header.split(",") if t.strip()]


def validate_precondition(etag: str, if_match: Optional[str]) -> bool:
    """
    Evaluate an ``If-Match`` header against the current ETag.

    A missing header or ``*`` always matches. Several tags may be listed
    comma-separated.
    """
    if if_match is None or not if_match.strip():
        return True
    tags = _candidates(if_match)
    return "*" in tags or etag in tags


def is_not_modified(etag: str, if_none_match: Optional[str]) -> bool:
    """True when an ``If-None-Match`` header matches, i.e. a read may answer 304."""
    if if_none_match is None or not if_none_match.strip():
        return False
    tags = _candidates(if_none_match)
    return "*" in tags or etag in tags


def require_precondition(etag: str, if_match: Optional[str]) -> None:
    """Raise PreconditionFailed (412) when ``If-Match`` does not match."""
    if not validate_precondition(etag, if_match):
        raise ODataValidationError(
            ODataErrorCode.PRECONDITION_FAILED,
            "Precondition Failed: ETag mismatch",
            target="If-Match",
        )
