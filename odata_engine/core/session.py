"""
odata_engine.core.session - Remote record store over HTTP
==========================================================

Registry and data engine proxying to a remote ObjectQL server:

- ``GET  {base}/api/metadata/objects``        -> registered object types
- ``GET  {base}/api/metadata/objects/{name}`` -> one object definition
- ``POST {base}/api/objectql``                -> ``{"op", "object", "args"}``

Requests use bearer-token auth and retry with exponential backoff.
Blocking HTTP calls run in a worker thread so the event loop is never
blocked.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests import Response, Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from odata_engine.core.registry import DataEngine, MetadataRegistry, ObjectMetadata
from odata_engine.odata.query import QueryDescriptor


class ODataUpstreamError(RuntimeError):
    """
    Exception raised when the remote server returns an error.

    Attributes
    ----------
    status : int
        HTTP status code from the remote server
    body : str
        Response body (truncated for display)
    url : str
        The URL that was called
    headers : dict
        Response headers
    code : str, optional
        Error code reported in the ``{"error": {...}}`` body
    """

    def __init__(
        self,
        status: int,
        body: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        code: Optional[str] = None,
    ):
        snippet = (body or "")[:1200]
        super().__init__(f"Upstream error {status} for {url}: {snippet}")
        self.status = status
        self.body = body or ""
        self.url = url
        self.headers = headers or {}
        self.code = code


@dataclass
class RemoteConfig:
    """
    Connection configuration for a remote ObjectQL server.

    Parameters
    ----------
    base_url : str
        Server root, e.g. "http://localhost:3000"
    token : str, optional
        Bearer token sent as ``Authorization`` header
    timeout : float
        Request timeout in seconds (default: 30.0)
    retries : int
        Number of retry attempts (default: 3)
    backoff : float
        Backoff factor for retries (default: 0.5)
    verify : bool or str
        SSL verification (True, False, or path to CA bundle)
    user_agent : str
        User-Agent header value

    Examples
    --------
    >>> cfg = RemoteConfig(base_url="http://localhost:3000", token="eyJ...")
    """
    base_url: str
    token: Optional[str] = None
    timeout: float = 30.0
    retries: int = 3
    backoff: float = 0.5
    verify: Any = True
    user_agent: str = "odata-engine/0.1"


class RemoteEngine(MetadataRegistry, DataEngine):
    """
    MetadataRegistry and DataEngine backed by a remote ObjectQL server.

    Object metadata is loaded by ``refresh()`` and served from memory
    until the next refresh.

    Parameters
    ----------
    cfg : RemoteConfig
        Connection configuration

    Examples
    --------
    >>> with RemoteEngine(RemoteConfig("http://localhost:3000")) as engine:
    ...     engine.refresh()
    ...     engine.list_object_types()
    """

    def __init__(self, cfg: RemoteConfig) -> None:
        self.cfg = cfg
        self.base = cfg.base_url.rstrip("/")
        self.timeout = float(cfg.timeout)
        self.logger = logging.getLogger("odata_engine.remote")
        self.session = self._build_session()
        self._objects: Dict[str, ObjectMetadata] = {}

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()

    def __enter__(self) -> "RemoteEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---------------- session ----------------

    def _build_session(self) -> Session:
        sess = requests.Session()
        if self.cfg.token:
            sess.headers.update({"Authorization": f"Bearer {self.cfg.token}"})
        sess.headers.update({
            "Accept": "application/json",
            "User-Agent": self.cfg.user_agent,
        })

        retry = Retry(
            total=self.cfg.retries,
            backoff_factor=self.cfg.backoff,
            status_forcelist=(429, 502, 503, 504),
            allowed_methods=frozenset({"GET", "HEAD", "OPTIONS"}),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=20)
        sess.mount("https://", adapter)
        sess.mount("http://", adapter)
        return sess

    # ---------------- helpers ----------------

    def _extract_error(self, r: Response) -> Tuple[str, Optional[str]]:
        try:
            data = r.json()
        except ValueError:
            return r.text, None
        err = data.get("error") if isinstance(data, dict) else None
        if not isinstance(err, dict):
            return r.text, None
        return str(err.get("message") or r.text), err.get("code")

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base}{path}"
        t0 = time.perf_counter()
        r = self.session.request(
            method=method,
            url=url,
            data=json.dumps(payload, separators=(",", ":"), default=str) if payload is not None else None,
            headers={"Content-Type": "application/json"} if payload is not None else None,
            timeout=self.timeout,
            verify=self.cfg.verify,
        )
        dt = (time.perf_counter() - t0) * 1000.0
        self.logger.debug("%s %s %s %sms", method, url, r.status_code, round(dt, 1))

        if r.status_code >= 400:
            message, code = self._extract_error(r)
            raise ODataUpstreamError(r.status_code, message, url, dict(r.headers), code)
        try:
            data = r.json()
        except ValueError:
            raise ODataUpstreamError(502, f"Invalid JSON from upstream: {r.text[:200]}", url) from None
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            err = data["error"]
            raise ODataUpstreamError(
                502,
                str(err.get("message") or "Upstream error"),
                url,
                dict(r.headers),
                err.get("code"),
            )
        return data

    def call(self, op: str, object_name: str, args: Any) -> Any:
        """
        Execute one ObjectQL operation.

        Parameters
        ----------
        op : str
            Operation: find, findOne, create, update, delete, count
        object_name : str
            Target object type
        args : any
            Operation arguments

        Returns
        -------
        any
            The ``data`` member of the response
        """
        data = self._request("POST", "/api/objectql", {"op": op, "object": object_name, "args": args})
        return data.get("data") if isinstance(data, dict) else data

    async def _call(self, op: str, object_name: str, args: Any) -> Any:
        return await asyncio.to_thread(self.call, op, object_name, args)

    # ---------------- registry ----------------

    def refresh(self) -> List[str]:
        """Reload object metadata from the server; returns the type names."""
        listing = self._request("GET", "/api/metadata/objects")
        entries = listing.get("objects", []) if isinstance(listing, dict) else listing or []

        objects: Dict[str, ObjectMetadata] = {}
        for entry in entries:
            name = entry if isinstance(entry, str) else entry.get("name")
            if not name:
                continue
            detail = self._request("GET", f"/api/metadata/objects/{name}")
            if isinstance(detail, dict) and not detail.get("name"):
                detail = dict(detail, name=name)
            objects[name] = ObjectMetadata.from_dict(detail or {"name": name})

        self._objects = objects
        self.logger.info("loaded %s object types from %s", len(objects), self.base)
        return list(objects)

    def list_object_types(self) -> List[str]:
        return list(self._objects)

    def get_object_metadata(self, name: str) -> Optional[ObjectMetadata]:
        return self._objects.get(name)

    # ---------------- DataEngine ----------------

    async def find(self, name: str, query: QueryDescriptor) -> List[Dict[str, Any]]:
        return list(await self._call("find", name, query.to_dict()) or [])

    async def get(self, name: str, id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._call("findOne", name, {"id": id})
        except ODataUpstreamError as e:
            if e.status == 404:
                return None
            raise

    async def create(self, name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call("create", name, data)

    async def update(self, name: str, id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            return await self._call("update", name, {"id": id, "data": data})
        except ODataUpstreamError as e:
            if e.status == 404:
                return None
            raise

    async def delete(self, name: str, id: str) -> bool:
        try:
            result = await self._call("delete", name, {"id": id})
        except ODataUpstreamError as e:
            if e.status == 404:
                return False
            raise
        return result is not False and result is not None

    async def count(self, name: str, query: QueryDescriptor) -> int:
        return int(await self._call("count", name, query.for_count().to_dict()) or 0)
