"""
odata_engine.odata.messages - Transport-neutral request/response
=================================================================

The handler works on these plain values so that the same code path
serves FastAPI requests and the parts of a ``$batch`` body.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Dict, Optional, Union

from odata_engine.core.errors import ODataError


@dataclass
class ODataRequest:
    """
    One OData request.

    Attributes
    ----------
    method : str
        HTTP method
    path : str
        Path relative to the service base path, e.g. ``/Products('1')``
    query_string : str
        Raw query string without the leading ``?``
    headers : dict
        Request headers; lookups are case-insensitive
    body : str or bytes, optional
        Raw request body
    """

    method: str
    path: str = "/"
    query_string: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Union[str, bytes]] = None

    def __post_init__(self) -> None:
        self.method = (self.method or "").upper()
        self.headers = {k.lower(): v for k, v in (self.headers or {}).items()}

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


@dataclass
class ODataResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    error: Optional[ODataError] = None

    @classmethod
    def json(cls, status: int, payload: Any, headers: Optional[Dict[str, str]] = None) -> "ODataResponse":
        out = {"Content-Type": "application/json"}
        out.update(headers or {})
        return cls(status, out, json.dumps(payload, default=str))

    @classmethod
    def from_error(cls, err: ODataError) -> "ODataResponse":
        resp = cls.json(err.status, err.to_envelope())
        resp.error = err
        return resp

    @classmethod
    def empty(cls, status: int, headers: Optional[Dict[str, str]] = None) -> "ODataResponse":
        return cls(status, dict(headers or {}), "")

    @property
    def reason(self) -> str:
        try:
            return HTTPStatus(self.status).phrase
        except ValueError:
            return ""

    def to_http(self) -> str:
        """Render as an HTTP/1.1 status line, headers and body."""
        lines = [f"HTTP/1.1 {self.status} {self.reason}".rstrip()]
        lines.extend(f"{k}: {v}" for k, v in self.headers.items())
        return "\r\n".join(lines) + "\r\n\r\n" + (self.body or "")
