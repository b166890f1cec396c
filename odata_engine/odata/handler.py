"""
odata_engine.odata.handler - Single-request dispatch
=====================================================

Routes one OData request (service document, ``$metadata``, ``$batch``,
entity-set collections, ``$count`` and single entities) onto the
metadata registry and data engine, and renders the response.

Every failure is caught here once, passed through ``map_error`` and
returned as an ``{"error": {...}}`` envelope.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from odata_engine.core.config import ODataServiceConfig
from odata_engine.core.errors import ODataErrorCode, ODataValidationError, map_error
from odata_engine.core.registry import ID_FIELD, DataEngine, MetadataRegistry
from odata_engine.odata.batch import BatchExecutor, extract_boundary, render_batch_response
from odata_engine.odata.etag import compute_etag, is_not_modified, require_precondition
from odata_engine.odata.expand import ExpandOrchestrator, parse_expand
from odata_engine.odata.messages import ODataRequest, ODataResponse
from odata_engine.odata.metadata import render_metadata, service_document
from odata_engine.odata.query import (
    SystemQueryOptions,
    build_query,
    include_fields,
    parse_query_string,
    parse_select,
    parse_system_options,
    project_record,
)

logger = logging.getLogger("odata_engine.handler")


_ENTITY_PATH = re.compile(r"^/(?P<set>[A-Za-z_][\w.]*)(?:\((?P<key>[^)]*)\))?/?$")
_COUNT_PATH = re.compile(r"^/(?P<set>[A-Za-z_][\w.]*)/\$count/?$")


def _error(code: ODataErrorCode, message: str, target: Optional[str] = None) -> ODataValidationError:
    return ODataValidationError(code, message, target=target)


def parse_key(raw: str) -> str:
    """
    Decode an entity key segment.

    >>> parse_key("'it''s'")
    "it's"
    >>> parse_key("42")
    '42'
    """
    key = raw.strip()
    if key.startswith("'") and key.endswith("'") and len(key) >= 2:
        key = key[1:-1].replace("''", "'")
    if not key:
        raise _error(ODataErrorCode.BAD_REQUEST, "Entity key must not be empty")
    return key


def _body_text(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return str(body)


def read_json_object(body: Any) -> Dict[str, Any]:
    text = _body_text(body).strip()
    if not text:
        return {}
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise _error(ODataErrorCode.BAD_REQUEST, f"Invalid JSON body: {exc}") from None
    if not isinstance(data, dict):
        raise _error(ODataErrorCode.BAD_REQUEST, "Request body must be a JSON object")
    return data


class ODataRequestHandler:
    """
    Protocol core: one request in, one response out.

    Parameters
    ----------
    config : ODataServiceConfig
        Service configuration
    registry : MetadataRegistry
        Registered object types
    engine : DataEngine
        Record store

    Examples
    --------
    >>> handler = ODataRequestHandler(ODataServiceConfig(), engine, engine)
    >>> response = await handler.handle(ODataRequest("GET", "/Products", "$top=5"))
    """

    def __init__(
        self,
        config: ODataServiceConfig,
        registry: MetadataRegistry,
        engine: DataEngine,
    ) -> None:
        if not isinstance(registry, MetadataRegistry):
            raise TypeError(f"registry must implement MetadataRegistry, got {type(registry).__name__}")
        if not isinstance(engine, DataEngine):
            raise TypeError(f"engine must implement DataEngine, got {type(engine).__name__}")

        self.config = config
        self.registry = registry
        self.engine = engine
        self.expander = ExpandOrchestrator(registry, engine, max_depth=config.max_expand_depth)
        self.batch = BatchExecutor(self.handle, config.base_path)

    # ---------------- entry point ----------------

    async def handle(self, request: ODataRequest) -> ODataResponse:
        """Handle one request; never raises."""
        try:
            return await self._route(request)
        except Exception as exc:
            return self._error_response(exc, request)

    def _error_response(self, exc: Exception, request: ODataRequest) -> ODataResponse:
        err = map_error(exc, debug=self.config.debug)
        if err.status >= 500:
            logger.error("%s %s failed", request.method, request.path, exc_info=exc)
        else:
            logger.debug("%s %s -> %s %s", request.method, request.path, err.status, err.code)
        return ODataResponse.from_error(err)

    # ---------------- routing ----------------

    async def _route(self, request: ODataRequest) -> ODataResponse:
        method = request.method
        path = request.path or "/"
        logger.debug("%s %s?%s", method, path, request.query_string)

        if method == "OPTIONS" and self.config.enable_cors:
            return ODataResponse.empty(204)

        if path in ("", "/"):
            self._require_method(method, "GET")
            return ODataResponse.json(200, service_document(self.registry, self.config.base_path))

        if path.rstrip("/") == "/$metadata":
            self._require_method(method, "GET")
            xml = render_metadata(self.registry, self.config.namespace)
            return ODataResponse(200, {"Content-Type": "application/xml"}, xml)

        if path.rstrip("/") == "/$batch":
            if not self.config.enable_batch:
                raise _error(ODataErrorCode.NOT_IMPLEMENTED, "Batch requests are not enabled")
            if method != "POST":
                raise _error(ODataErrorCode.METHOD_NOT_ALLOWED, "$batch requires POST method")
            return await self._batch(request)

        params = parse_query_string(request.query_string)

        m = _COUNT_PATH.match(path)
        if m:
            self._require_method(method, "GET")
            entity_set = self._entity_set(m.group("set"))
            return await self._count(entity_set, params)

        m = _ENTITY_PATH.match(path)
        if not m:
            raise _error(ODataErrorCode.NOT_FOUND, f"Invalid OData path: {path}")
        entity_set = self._entity_set(m.group("set"))
        raw_key = m.group("key")

        if raw_key is None:
            if method == "GET":
                return await self._query(entity_set, params)
            if method == "POST":
                return await self._create(entity_set, request)
            if method in ("PUT", "PATCH", "DELETE"):
                raise _error(ODataErrorCode.BAD_REQUEST, f"{method} requires an entity key")
            raise _error(ODataErrorCode.METHOD_NOT_ALLOWED, f"Method {method} not allowed on {path}")

        key = parse_key(raw_key)
        if method == "GET":
            return await self._get(entity_set, key, params, request)
        if method in ("PUT", "PATCH"):
            return await self._update(entity_set, key, request)
        if method == "DELETE":
            return await self._delete(entity_set, key, request)
        raise _error(ODataErrorCode.METHOD_NOT_ALLOWED, f"Method {method} not allowed on {path}")

    @staticmethod
    def _require_method(method: str, allowed: str) -> None:
        if method != allowed:
            raise _error(ODataErrorCode.METHOD_NOT_ALLOWED, f"Method {method} not allowed")

    def _entity_set(self, name: str) -> str:
        if self.registry.get_object_metadata(name) is None:
            raise _error(ODataErrorCode.NOT_FOUND, f"Entity set '{name}' not found", target=name)
        return name

    def _context(self, entity_set: str, single: bool = False) -> str:
        suffix = "/$entity" if single else ""
        return f"{self.config.base_path}/$metadata#{entity_set}{suffix}"

    def _etag_headers(self, entity: Dict[str, Any]) -> Dict[str, str]:
        if not self.config.enable_etags:
            return {}
        return {"ETag": compute_etag(entity)}

    async def _check_if_match(self, entity_set: str, key: str, request: ODataRequest) -> None:
        if_match = request.header("if-match")
        if not self.config.enable_etags or not if_match:
            return
        current = await self.engine.get(entity_set, key)
        if current is None:
            raise _error(ODataErrorCode.NOT_FOUND, f"Entity '{key}' not found in {entity_set}")
        require_precondition(compute_etag(current), if_match)

    # ---------------- operations ----------------

    def _expanded_properties(self, options: SystemQueryOptions) -> List[str]:
        if not options.expand or self.config.max_expand_depth < 1:
            return []
        return [spec.property for spec in parse_expand(options.expand)]

    async def _query(self, entity_set: str, params: Dict[str, str]) -> ODataResponse:
        options = parse_system_options(params)
        query = build_query(options, enable_search=self.config.enable_search)
        # Expanded navigation properties survive $select
        query.fields = include_fields(query.fields, self._expanded_properties(options))

        records = await self.engine.find(entity_set, query)
        if options.expand:
            await self.expander.expand(entity_set, records, options.expand)

        payload: Dict[str, Any] = {"@odata.context": self._context(entity_set)}
        if options.count:
            payload["@odata.count"] = await self.engine.count(entity_set, query.for_count())
        payload["value"] = records
        return ODataResponse.json(200, payload)

    async def _count(self, entity_set: str, params: Dict[str, str]) -> ODataResponse:
        query = build_query(parse_system_options(params), enable_search=self.config.enable_search)
        total = await self.engine.count(entity_set, query.for_count())
        return ODataResponse(200, {"Content-Type": "text/plain"}, str(total))

    async def _get(
        self,
        entity_set: str,
        key: str,
        params: Dict[str, str],
        request: ODataRequest,
    ) -> ODataResponse:
        options = parse_system_options(params)
        fields: Optional[List[str]] = None
        if options.select is not None:
            fields = include_fields(parse_select(options.select), self._expanded_properties(options))

        entity = await self.engine.get(entity_set, key)
        if entity is None:
            raise _error(ODataErrorCode.NOT_FOUND, f"Entity '{key}' not found in {entity_set}")

        headers = self._etag_headers(entity)
        if headers and is_not_modified(headers["ETag"], request.header("if-none-match")):
            return ODataResponse.empty(304, headers)

        if options.expand:
            await self.expander.expand(entity_set, [entity], options.expand)
        body = {"@odata.context": self._context(entity_set, single=True)}
        body.update(project_record(entity, fields))
        return ODataResponse.json(200, body, headers)

    async def _create(self, entity_set: str, request: ODataRequest) -> ODataResponse:
        data = read_json_object(request.body)
        created = await self.engine.create(entity_set, data)

        headers = self._etag_headers(created)
        ident = created.get(ID_FIELD, created.get("id"))
        if ident is not None:
            headers["Location"] = f"{self.config.base_path}/{entity_set}('{ident}')"
        body = {"@odata.context": self._context(entity_set, single=True)}
        body.update(created)
        return ODataResponse.json(201, body, headers)

    async def _update(self, entity_set: str, key: str, request: ODataRequest) -> ODataResponse:
        data = read_json_object(request.body)
        await self._check_if_match(entity_set, key, request)

        updated = await self.engine.update(entity_set, key, data)
        if updated is None:
            raise _error(ODataErrorCode.NOT_FOUND, f"Entity '{key}' not found in {entity_set}")
        body = {"@odata.context": self._context(entity_set, single=True)}
        body.update(updated)
        return ODataResponse.json(200, body, self._etag_headers(updated))

    async def _delete(self, entity_set: str, key: str, request: ODataRequest) -> ODataResponse:
        await self._check_if_match(entity_set, key, request)
        if not await self.engine.delete(entity_set, key):
            raise _error(ODataErrorCode.NOT_FOUND, f"Entity '{key}' not found in {entity_set}")
        return ODataResponse.empty(204)

    async def _batch(self, request: ODataRequest) -> ODataResponse:
        boundary = extract_boundary(request.header("content-type"))
        if not boundary:
            raise _error(ODataErrorCode.BAD_REQUEST, "Missing multipart boundary in Content-Type")
        responses = await self.batch.execute(_body_text(request.body), boundary)
        response_boundary, body = render_batch_response(responses)
        return ODataResponse(
            200,
            {"Content-Type": f"multipart/mixed; boundary={response_boundary}"},
            body,
        )

