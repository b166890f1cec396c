"""
Tests for odata_engine.core.errors module.
"""

from odata_engine.core.errors import (
    ODataErrorCode,
    ODataValidationError,
    create_odata_error,
    map_error,
)
from odata_engine.core.memory import NotFoundError, ValidationError
from odata_engine.core.session import ODataUpstreamError


class TestErrorCodes:
    """Tests for ODataErrorCode statuses."""

    def test_http_status(self):
        assert ODataErrorCode.NOT_FOUND.http_status == 404
        assert ODataErrorCode.PRECONDITION_FAILED.http_status == 412
        assert ODataErrorCode.NOT_IMPLEMENTED.http_status == 501

    def test_query_codes_are_bad_request(self):
        assert ODataErrorCode.INVALID_FILTER.http_status == 400
        assert ODataErrorCode.INVALID_EXPAND.http_status == 400


class TestEnvelope:
    """Tests for the error envelope."""

    def test_omits_empty_fields(self):
        err = create_odata_error(ODataErrorCode.BAD_REQUEST, "bad")
        assert err.to_envelope() == {"error": {"code": "BadRequest", "message": "bad"}}

    def test_details(self):
        err = create_odata_error(
            ODataErrorCode.INVALID_QUERY,
            "two problems",
            target="$top",
            details=[{"code": "InvalidQuery", "message": "first"}],
        )
        envelope = err.to_envelope()["error"]
        assert envelope["target"] == "$top"
        assert envelope["details"] == [{"code": "InvalidQuery", "message": "first"}]

    def test_unknown_code_status(self):
        assert create_odata_error(ODataErrorCode.BAD_REQUEST, "x").status == 400
        assert map_error(RuntimeError("x")).status == 500


class TestMapError:
    """Tests for map_error classification."""

    def test_validation_error_passes_through(self):
        exc = ODataValidationError(ODataErrorCode.INVALID_SELECT, "bad field", target="$select")
        err = map_error(exc)
        assert err.code == "InvalidSelect"
        assert err.target == "$select"

    def test_by_class_name(self):
        assert map_error(PermissionError("no")).code == "Forbidden"
        assert map_error(NotFoundError("gone")).code == "NotFound"

    def test_by_code_attribute(self):
        assert map_error(ValidationError("name is required")).code == "BadRequest"

        exc = Exception("who are you")
        exc.code = "UNAUTHORIZED"
        assert map_error(exc).code == "Unauthorized"

    def test_default_messages(self):
        assert map_error(NotFoundError()).message == "Resource not found"
        assert map_error(RuntimeError()).message == "Internal server error"

    def test_database_errors_hide_message(self):
        exc = Exception("password=hunter2 at db01")
        exc.code = "DB_CONNECTION"
        err = map_error(exc)
        assert err.code == "InternalServerError"
        assert "hunter2" not in err.message

    def test_status_attribute(self):
        err = map_error(ODataUpstreamError(403, "denied", url="http://remote/api"))
        assert err.code == "Forbidden"

    def test_debug_innererror_only_for_server_errors(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError as exc:
            err = map_error(exc, debug=True)
        assert err.innererror["type"] == "RuntimeError"
        assert "boom" in err.innererror["stacktrace"]

        assert map_error(NotFoundError("x"), debug=True).innererror is None
        assert map_error(RuntimeError("y")).innererror is None
