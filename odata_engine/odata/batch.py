"""
odata_engine.odata.batch - $batch and changesets
=================================================

Splits a ``multipart/mixed`` batch body into plain requests and
changesets, dispatches every request through the single-request path
and re-composes a multipart response in request order.

Changesets run strictly sequentially and stop at the first failing
operation. Atomicity is best-effort only: the record store offers no
transactions, so ``CompensationLog`` records and logs what an undo
would have to do for the operations that already succeeded, and
executes none of it. Data written by those operations stays written.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import unquote, urlsplit

from odata_engine.core.errors import (
    ODataError,
    ODataErrorCode,
    ODataErrorDetail,
    ODataValidationError,
    create_odata_error,
)
from odata_engine.odata.messages import ODataRequest, ODataResponse

logger = logging.getLogger("odata_engine.batch")


_BOUNDARY_RE = re.compile(r"boundary=[\"']?([^\"';,\s]+)[\"']?", re.IGNORECASE)
_MULTIPART_RE = re.compile(r"content-type:\s*multipart/mixed", re.IGNORECASE)
_REQUEST_LINE_RE = re.compile(r"^(GET|POST|PATCH|PUT|DELETE)\s+(.+?)(?:\s+HTTP/\d(?:\.\d)?)?$")
_LINE_SPLIT_RE = re.compile(r"\r?\n")


@dataclass
class BatchRequest:
    """
    A plain request inside a batch.

    ``error`` is set when the part could not be read; such a part is
    answered with 400 instead of being dispatched.
    """

    method: str
    url: str
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class Changeset:
    requests: List[BatchRequest] = field(default_factory=list)


BatchPart = Union[BatchRequest, Changeset]


@dataclass
class ChangesetOutcome:
    """
    Result of one changeset.

    Attributes
    ----------
    responses : list of str
        HTTP-shaped responses; a single error part when ``failed``
    completed : int
        Operations executed, including a failing one
    succeeded : int
        Operations that returned a 2xx/3xx status
    total : int
        Operations in the changeset
    failed : bool
        Whether execution stopped early
    """

    responses: List[str]
    completed: int
    succeeded: int
    total: int
    failed: bool = False


def extract_boundary(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = _BOUNDARY_RE.search(content_type)
    return m.group(1) if m else None


def _parse_request(section: str) -> BatchRequest:
    lines = _LINE_SPLIT_RE.split(section)
    for idx, line in enumerate(lines):
        m = _REQUEST_LINE_RE.match(line.strip())
        if not m:
            continue
        headers: Dict[str, str] = {}
        pos = idx + 1
        while pos < len(lines) and lines[pos].strip():
            name, sep, value = lines[pos].partition(":")
            if sep:
                headers[name.strip().lower()] = value.strip()
            pos += 1
        body = "\r\n".join(lines[pos + 1:]).strip()
        return BatchRequest(method=m.group(1), url=m.group(2), body=body, headers=headers)
    return BatchRequest(method="", url="", error="Invalid request format: no HTTP request line")


def parse_batch(body: str, boundary: str) -> List[BatchPart]:
    """
    Parse a multipart batch body.

    Parameters
    ----------
    body : str
        Raw request body
    boundary : str
        Boundary from the ``Content-Type`` header

    Returns
    -------
    list of BatchRequest / Changeset
        Parts in body order

    Raises
    ------
    ODataValidationError
        BadRequest when the boundary cannot be found or changesets nest
    """
    marker = f"--{boundary}"
    if marker not in body:
        raise ODataValidationError(
            ODataErrorCode.BAD_REQUEST,
            f"Batch body does not contain boundary '{boundary}'",
        )

    parts: List[BatchPart] = []
    sections = [s for s in body.split(marker)[1:] if s.strip() and not s.startswith("--")]
    for section in sections:
        if _MULTIPART_RE.search(section):
            inner = extract_boundary(section)
            if not inner or inner == boundary:
                parts.append(BatchRequest(method="", url="", error="Changeset without its own boundary"))
                continue
            requests: List[BatchRequest] = []
            for item in parse_batch(section, inner):
                if isinstance(item, Changeset):
                    raise ODataValidationError(
                        ODataErrorCode.BAD_REQUEST, "Changesets must not be nested"
                    )
                requests.append(item)
            parts.append(Changeset(requests))
        else:
            parts.append(_parse_request(section))
    return parts


def split_url(url: str, base_path: str = "") -> Tuple[str, str]:
    """
    Split a part URL into (path relative to ``base_path``, query string).

    Accepts relative (``Products(1)``), absolute-path (``/odata/Products``)
    and full URLs.
    """
    parts = urlsplit(url)
    path = unquote(parts.path)
    if not path.startswith("/"):
        path = "/" + path
    base = base_path.rstrip("/")
    if base and (path == base or path.startswith(base + "/")):
        path = path[len(base):] or "/"
    return path, parts.query


def render_batch_response(responses: List[str]) -> Tuple[str, str]:
    """
    Wrap HTTP-shaped responses in a multipart/mixed envelope.

    Returns
    -------
    tuple of (str, str)
        (boundary, body); the boundary is freshly generated per call
    """
    boundary = f"batchresponse_{uuid.uuid4().hex}"
    body = "".join(
        f"--{boundary}\r\nContent-Type: application/http\r\n"
        f"Content-Transfer-Encoding: binary\r\n\r\n{r}\r\n"
        for r in responses
    ) + f"--{boundary}--"
    return boundary, body


# ---------------------------------------------------------------------------
# Compensation
# ---------------------------------------------------------------------------

_INTENTS = {
    "POST": "delete the created record",
    "DELETE": "restore the deleted record",
    "PUT": "restore the previous values",
    "PATCH": "restore the previous values",
    "GET": "nothing to undo",
}


@dataclass
class CompensationEntry:
    method: str
    url: str
    intent: str


class CompensationLog:
    """
    Undo intents for succeeded changeset operations.

    Contract: ``rollback()`` logs one intent per recorded operation in
    reverse order and returns them. It does not reconstruct or replay
    inverse operations.
    """

    def __init__(self) -> None:
        self.entries: List[CompensationEntry] = []

    def record(self, request: BatchRequest) -> None:
        intent = _INTENTS.get(request.method, "unknown operation")
        self.entries.append(CompensationEntry(request.method, request.url, intent))

    def rollback(self) -> List[CompensationEntry]:
        undone = list(reversed(self.entries))
        for entry in undone:
            logger.warning(
                "changeset rollback not executed: %s %s -> would %s",
                entry.method, entry.url, entry.intent,
            )
        return undone


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

Dispatch = Callable[[ODataRequest], Awaitable[ODataResponse]]


class BatchExecutor:
    """
    Executes parsed batch parts through a single-request dispatcher.

    Parameters
    ----------
    dispatch : callable
        Coroutine function handling one ODataRequest; must not raise
    base_path : str
        Service base path, stripped from part URLs
    """

    def __init__(self, dispatch: Dispatch, base_path: str = "") -> None:
        self.dispatch = dispatch
        self.base_path = base_path.rstrip("/")

    async def execute(self, raw_body: str, boundary: str) -> List[str]:
        """
        Execute a batch body.

        Runs of consecutive plain GET parts are dispatched concurrently;
        writes and changesets run one at a time. The result list is in
        the order of the parts in the body.
        """
        parts = parse_batch(raw_body, boundary)
        responses: List[str] = []
        reads: List[BatchRequest] = []

        for part in parts:
            if isinstance(part, BatchRequest) and part.method == "GET" and not part.error:
                reads.append(part)
                continue
            responses.extend(await self._run_reads(reads))
            reads = []
            if isinstance(part, Changeset):
                outcome = await self.execute_changeset(part)
                responses.extend(outcome.responses)
            else:
                responses.append((await self._dispatch(part)).to_http())
        responses.extend(await self._run_reads(reads))

        logger.info("batch executed: %s parts, %s responses", len(parts), len(responses))
        return responses

    async def execute_changeset(self, changeset: Changeset) -> ChangesetOutcome:
        total = len(changeset.requests)
        log = CompensationLog()
        results: List[str] = []

        for index, request in enumerate(changeset.requests, start=1):
            response = await self._dispatch(request)
            if response.status >= 400:
                log.rollback()
                logger.warning(
                    "changeset aborted at operation %s/%s (status %s)", index, total, response.status
                )
                outcome = ChangesetOutcome([], completed=index, succeeded=len(results), total=total, failed=True)
                outcome.responses.append(self._changeset_error(response, outcome).to_http())
                return outcome
            results.append(response.to_http())
            log.record(request)

        return ChangesetOutcome(results, completed=total, succeeded=total, total=total)

    # ---------------- helpers ----------------

    async def _run_reads(self, reads: List[BatchRequest]) -> List[str]:
        if not reads:
            return []
        done = await asyncio.gather(*(self._dispatch(r) for r in reads))
        return [r.to_http() for r in done]

    async def _dispatch(self, request: BatchRequest) -> ODataResponse:
        if request.error:
            return ODataResponse.from_error(
                create_odata_error(ODataErrorCode.BAD_REQUEST, request.error)
            )
        path, query = split_url(request.url, self.base_path)
        if path.rstrip("/") == "/$batch":
            return ODataResponse.from_error(
                create_odata_error(ODataErrorCode.BAD_REQUEST, "Nested $batch requests are not allowed")
            )
        return await self.dispatch(
            ODataRequest(
                method=request.method,
                path=path,
                query_string=query,
                headers=request.headers,
                body=request.body,
            )
        )

    @staticmethod
    def _changeset_error(response: ODataResponse, outcome: ChangesetOutcome) -> ODataResponse:
        cause = response.error or _error_from_body(response)
        err = ODataError(
            code=cause.code,
            message=f"Changeset operation {outcome.completed}/{outcome.total} failed: {cause.message}",
            details=[ODataErrorDetail(code=cause.code, message=cause.message, target=cause.target)],
            innererror={
                "completedOperations": outcome.completed,
                "succeededOperations": outcome.succeeded,
                "totalOperations": outcome.total,
                "rollbackAttempted": True,
            },
        )
        failed = ODataResponse.json(response.status, err.to_envelope())
        failed.error = err
        return failed


def _error_from_body(response: ODataResponse) -> ODataError:
    try:
        payload = json.loads(response.body or "{}")
        return ODataError(**payload["error"])
    except (ValueError, KeyError, TypeError):
        return ODataError(code=str(response.status), message=response.reason or "Request failed")
