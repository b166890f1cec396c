"""
odata_engine.core.errors - OData error taxonomy
================================================

Error codes, the validation error raised by the query layers, the
``{"error": {...}}`` envelope model and the mapper that classifies
collaborator failures into the OData taxonomy.
"""

from __future__ import annotations

import traceback
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ODataErrorCode(str, Enum):
    """Error codes based on HTTP status codes and the OData spec."""

    # Client errors
    BAD_REQUEST = "BadRequest"
    UNAUTHORIZED = "Unauthorized"
    FORBIDDEN = "Forbidden"
    NOT_FOUND = "NotFound"
    METHOD_NOT_ALLOWED = "MethodNotAllowed"
    NOT_ACCEPTABLE = "NotAcceptable"
    PRECONDITION_FAILED = "PreconditionFailed"

    # Server errors
    INTERNAL_SERVER_ERROR = "InternalServerError"
    NOT_IMPLEMENTED = "NotImplemented"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"

    # Query option errors
    INVALID_QUERY = "InvalidQuery"
    INVALID_FILTER = "InvalidFilter"
    INVALID_ORDERBY = "InvalidOrderBy"
    INVALID_EXPAND = "InvalidExpand"
    INVALID_SELECT = "InvalidSelect"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS.get(self, 400)


_HTTP_STATUS: Dict[ODataErrorCode, int] = {
    ODataErrorCode.BAD_REQUEST: 400,
    ODataErrorCode.UNAUTHORIZED: 401,
    ODataErrorCode.FORBIDDEN: 403,
    ODataErrorCode.NOT_FOUND: 404,
    ODataErrorCode.METHOD_NOT_ALLOWED: 405,
    ODataErrorCode.NOT_ACCEPTABLE: 406,
    ODataErrorCode.PRECONDITION_FAILED: 412,
    ODataErrorCode.INTERNAL_SERVER_ERROR: 500,
    ODataErrorCode.NOT_IMPLEMENTED: 501,
    ODataErrorCode.SERVICE_UNAVAILABLE: 503,
}

_CODE_FOR_STATUS: Dict[int, ODataErrorCode] = {
    status: code for code, status in _HTTP_STATUS.items()
}


class ODataErrorDetail(BaseModel):
    code: str
    message: str
    target: Optional[str] = None


class ODataError(BaseModel):
    """
    OData error body.

    Attributes
    ----------
    code : str
        One of the ``ODataErrorCode`` values
    message : str
        Human-readable message
    target : str, optional
        The query option or property the error refers to
    details : list of ODataErrorDetail, optional
        Nested per-item errors
    innererror : dict, optional
        Service-defined diagnostics (debug traces, changeset counters)
    """

    code: str
    message: str
    target: Optional[str] = None
    details: Optional[List[ODataErrorDetail]] = None
    innererror: Optional[Dict[str, Any]] = None

    @property
    def status(self) -> int:
        try:
            return ODataErrorCode(self.code).http_status
        except ValueError:
            return 500

    def to_envelope(self) -> Dict[str, Any]:
        return {"error": self.model_dump(exclude_none=True)}


class ODataValidationError(Exception):
    """
    Error raised by the filter, query, expand and batch layers.

    Passed through ``map_error`` unmodified, so ``target`` and ``details``
    survive to the response envelope.
    """

    def __init__(
        self,
        code: ODataErrorCode,
        message: str,
        target: Optional[str] = None,
        details: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.target = target
        self.details = details

    @property
    def status(self) -> int:
        return self.code.http_status

    def to_odata_error(self) -> ODataError:
        return ODataError(
            code=self.code.value,
            message=self.message,
            target=self.target,
            details=[ODataErrorDetail(**d) for d in self.details] if self.details else None,
        )


def create_odata_error(
    code: ODataErrorCode,
    message: str,
    target: Optional[str] = None,
    details: Optional[List[Dict[str, Any]]] = None,
    innererror: Optional[Dict[str, Any]] = None,
) -> ODataError:
    """Build an ``ODataError`` from its parts."""
    return ODataError(
        code=code.value,
        message=message,
        target=target,
        details=[ODataErrorDetail(**d) for d in details] if details else None,
        innererror=innererror,
    )


def _matches(err: BaseException, names: tuple, codes: tuple) -> bool:
    name = getattr(err, "name", None) or type(err).__name__
    code = getattr(err, "code", None)
    return name in names or (isinstance(code, str) and code in codes)


def map_error(err: BaseException, *, debug: bool = False) -> ODataError:
    """
    Map an arbitrary collaborator error to an OData error.

    Parameters
    ----------
    err : BaseException
        The error raised while processing a request
    debug : bool
        Attach an ``innererror`` with type, message and stack trace to
        server-side errors

    Returns
    -------
    ODataError
        The classified error, defaulting to ``InternalServerError``
    """
    if isinstance(err, ODataValidationError):
        return err.to_odata_error()

    message = str(err) if str(err) else ""
    code = getattr(err, "code", None)

    if _matches(err, ("ValidationError",), ("VALIDATION_ERROR",)):
        result = create_odata_error(ODataErrorCode.BAD_REQUEST, message or "Validation failed")
    elif _matches(err, ("PermissionError",), ("FORBIDDEN",)):
        result = create_odata_error(ODataErrorCode.FORBIDDEN, message or "Access forbidden")
    elif _matches(err, ("AuthenticationError",), ("UNAUTHORIZED",)):
        result = create_odata_error(ODataErrorCode.UNAUTHORIZED, message or "Authentication required")
    elif _matches(err, ("NotFoundError",), ("NOT_FOUND",)):
        result = create_odata_error(ODataErrorCode.NOT_FOUND, message or "Resource not found")
    elif _matches(err, ("DatabaseError",), ()) or (isinstance(code, str) and code.startswith("DB_")):
        # Never leak driver messages
        result = create_odata_error(
            ODataErrorCode.INTERNAL_SERVER_ERROR,
            "An error occurred while processing your request",
        )
    elif isinstance(getattr(err, "status", None), int) and getattr(err, "status") in _CODE_FOR_STATUS:
        result = create_odata_error(_CODE_FOR_STATUS[getattr(err, "status")], message)
    else:
        result = create_odata_error(
            ODataErrorCode.INTERNAL_SERVER_ERROR, message or "Internal server error"
        )

    if debug and result.status >= 500:
        result.innererror = {
            "message": message,
            "type": type(err).__name__,
            "stacktrace": "".join(
                traceback.format_exception(type(err), err, err.__traceback__)
            ),
        }
    return result
