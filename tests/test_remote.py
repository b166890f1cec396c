"""
Tests for odata_engine.core.session module.
"""

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from odata_engine.core.session import ODataUpstreamError, RemoteConfig, RemoteEngine
from odata_engine.odata.filter import parse_filter
from odata_engine.odata.query import OrderBy, QueryDescriptor


def response(status=200, payload=None, text=None):
    r = MagicMock()
    r.status_code = status
    r.headers = {"Content-Type": "application/json"}
    r.text = text if text is not None else json.dumps(payload)
    if text is not None:
        r.json.side_effect = ValueError("not json")
    else:
        r.json.return_value = payload
    return r


@pytest.fixture
def remote():
    engine = RemoteEngine(RemoteConfig(base_url="http://remote:3000/", token="secret", retries=0))
    engine.session.request = MagicMock()
    yield engine
    engine.close()


def sent_payload(remote, index=-1):
    return json.loads(remote.session.request.call_args_list[index].kwargs["data"])


class TestSession:
    """Tests for session construction."""

    def test_headers(self, remote):
        assert remote.session.headers["Authorization"] == "Bearer secret"
        assert remote.session.headers["Accept"] == "application/json"
        assert remote.base == "http://remote:3000"

    def test_no_token(self):
        with RemoteEngine(RemoteConfig(base_url="http://remote")) as engine:
            assert "Authorization" not in engine.session.headers


class TestRefresh:
    """Tests for metadata loading."""

    def test_refresh(self, remote):
        remote.session.request.side_effect = [
            response(payload={"objects": [{"name": "Products"}, "Orders"]}),
            response(payload={"fields": {"name": {"type": "text", "required": True}}}),
            response(payload={"name": "Orders", "fields": {"product": {"type": "lookup", "reference": "Products"}}}),
        ]
        assert remote.refresh() == ["Products", "Orders"]
        assert remote.list_object_types() == ["Products", "Orders"]
        assert remote.get_object_metadata("Products").get_field("name").required
        assert remote.get_object_metadata("Orders").get_field("product").reference == "Products"

        urls = [c.kwargs["url"] for c in remote.session.request.call_args_list]
        assert urls[0] == "http://remote:3000/api/metadata/objects"
        assert urls[1] == "http://remote:3000/api/metadata/objects/Products"


class TestOperations:
    """Tests for the ObjectQL calls."""

    def test_find_payload(self, remote):
        remote.session.request.return_value = response(payload={"data": [{"_id": "1"}]})
        query = QueryDescriptor(
            filter=parse_filter("price gt 10"),
            order_by=[OrderBy("name", "desc")],
            limit=5,
        )
        assert asyncio.run(remote.find("Products", query)) == [{"_id": "1"}]

        call = remote.session.request.call_args
        assert call.kwargs["method"] == "POST"
        assert call.kwargs["url"] == "http://remote:3000/api/objectql"
        assert sent_payload(remote) == {
            "op": "find",
            "object": "Products",
            "args": {
                "where": {"price": {"$gt": 10}},
                "orderBy": [{"field": "name", "order": "desc"}],
                "limit": 5,
            },
        }

    def test_count_drops_paging(self, remote):
        remote.session.request.return_value = response(payload={"data": 7})
        query = QueryDescriptor(filter=parse_filter("price gt 10"), limit=1, offset=3)
        assert asyncio.run(remote.count("Products", query)) == 7
        assert sent_payload(remote)["args"] == {"where": {"price": {"$gt": 10}}}

    def test_update_payload(self, remote):
        remote.session.request.return_value = response(payload={"data": {"_id": "1", "price": 2}})
        asyncio.run(remote.update("Products", "1", {"price": 2}))
        assert sent_payload(remote) == {
            "op": "update",
            "object": "Products",
            "args": {"id": "1", "data": {"price": 2}},
        }

    def test_not_found_maps_to_none(self, remote):
        remote.session.request.return_value = response(404, {"error": {"code": "NOT_FOUND", "message": "gone"}})
        assert asyncio.run(remote.get("Products", "x")) is None
        assert asyncio.run(remote.update("Products", "x", {})) is None
        assert asyncio.run(remote.delete("Products", "x")) is False

    def test_http_error_raises(self, remote):
        remote.session.request.return_value = response(403, {"error": {"code": "FORBIDDEN", "message": "denied"}})
        with pytest.raises(ODataUpstreamError) as exc:
            asyncio.run(remote.get("Products", "x"))
        assert exc.value.status == 403
        assert exc.value.code == "FORBIDDEN"
        assert "denied" in str(exc.value)

    def test_error_body_raises(self, remote):
        remote.session.request.return_value = response(200, {"error": {"code": "VALIDATION_ERROR", "message": "bad"}})
        with pytest.raises(ODataUpstreamError) as exc:
            asyncio.run(remote.create("Products", {}))
        assert exc.value.code == "VALIDATION_ERROR"

    def test_invalid_json_raises_502(self, remote):
        remote.session.request.return_value = response(200, text="<html>")
        with pytest.raises(ODataUpstreamError) as exc:
            remote.call("find", "Products", {})
        assert exc.value.status == 502
