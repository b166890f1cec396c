"""
Tests for odata_engine.odata.expand module.
"""

import asyncio

import pytest

from odata_engine.core.errors import ODataErrorCode, ODataValidationError
from odata_engine.odata.expand import (
    ExpandOrchestrator,
    ExpandSpec,
    build_related_query,
    parse_expand,
)
from odata_engine.odata.filter import InList, Logical
from odata_engine.odata.query import QueryDescriptor


def fetch(engine, name):
    return asyncio.run(engine.find(name, QueryDescriptor()))


class TestParseExpand:
    """Tests for parse_expand."""

    def test_simple_list(self):
        assert parse_expand("category, customer") == [ExpandSpec("category"), ExpandSpec("customer")]

    def test_nested_options(self):
        specs = parse_expand("customer($select=name;$expand=company($expand=country)),product")
        assert specs[0].property == "customer"
        assert specs[0].options == {"$select": "name", "$expand": "company($expand=country)"}
        assert specs[0].nested == "company($expand=country)"
        assert specs[1] == ExpandSpec("product")

    def test_quoted_separators_inside_filter(self):
        specs = parse_expand("customer($filter=name eq 'a,b;c')")
        assert specs[0].options["$filter"] == "name eq 'a,b;c'"

    @pytest.mark.parametrize("raw", ["customer($select=name", "customer)", "customer($top=1))"])
    def test_unbalanced(self, raw):
        with pytest.raises(ODataValidationError) as exc:
            parse_expand(raw)
        assert exc.value.code is ODataErrorCode.INVALID_EXPAND

    def test_unsupported_option(self):
        with pytest.raises(ODataValidationError) as exc:
            parse_expand("customer($levels=2)")
        assert exc.value.code is ODataErrorCode.INVALID_EXPAND


class TestBuildRelatedQuery:
    """Tests for build_related_query."""

    def test_ids_only(self):
        query = build_related_query(["a", "b"], {})
        assert query.filter == InList("_id", ("a", "b"))

    def test_nested_options(self):
        query = build_related_query(["a"], {"$filter": "x eq 1", "$select": "name", "$top": "2"})
        assert isinstance(query.filter, Logical)
        assert query.fields == ["name", "_id"]
        assert query.limit == 2

    def test_keep_adds_nested_navigation(self):
        query = build_related_query(["a"], {"$select": "name"}, ["company"])
        assert query.fields == ["name", "_id", "company"]

    def test_keep_without_select_projects_nothing(self):
        assert build_related_query(["a"], {}, ["company"]).fields is None

    def test_invalid_nested_top(self):
        with pytest.raises(ODataValidationError) as exc:
            build_related_query(["a"], {"$top": "-1"})
        assert exc.value.code is ODataErrorCode.INVALID_QUERY
        assert exc.value.target == "$top"


class TestExpandOrchestrator:
    """Tests for ExpandOrchestrator against the in-memory engine."""

    def test_lookup_replaced_by_record(self, engine):
        products = fetch(engine, "Products")
        asyncio.run(ExpandOrchestrator(engine, engine).expand("Products", products, "category"))
        laptop = next(p for p in products if p["_id"] == "p1")
        assert laptop["category"]["name"] == "Electronics"

    def test_non_relationship_field_skipped(self, engine):
        products = fetch(engine, "Products")
        asyncio.run(ExpandOrchestrator(engine, engine).expand("Products", products, "name,nothing"))
        assert products[0]["name"] == "Laptop"

    def test_nested_select_keeps_id(self, engine):
        orders = fetch(engine, "Orders")
        asyncio.run(
            ExpandOrchestrator(engine, engine).expand("Orders", orders, "customer($select=name)")
        )
        assert orders[0]["customer"] == {"_id": "cu1", "id": "cu1", "name": "John Smith"}

    def test_three_levels_within_default_depth(self, engine):
        orders = fetch(engine, "Orders")
        asyncio.run(
            ExpandOrchestrator(engine, engine).expand(
                "Orders", orders, "customer($expand=company($expand=country))"
            )
        )
        assert orders[0]["customer"]["company"]["country"]["name"] == "Germany"

    def test_depth_limit_stops_expansion(self, engine):
        orders = fetch(engine, "Orders")
        asyncio.run(
            ExpandOrchestrator(engine, engine, max_depth=2).expand(
                "Orders", orders, "customer($expand=company($expand=country))"
            )
        )
        company = orders[0]["customer"]["company"]
        assert company["name"] == "Acme"
        # Third level keeps its scalar foreign key
        assert company["country"] == "co1"

    def test_zero_depth_expands_nothing(self, engine):
        orders = fetch(engine, "Orders")
        asyncio.run(ExpandOrchestrator(engine, engine, max_depth=0).expand("Orders", orders, "customer"))
        assert orders[0]["customer"] == "cu1"

    def test_unresolved_key_left_as_is(self, engine):
        asyncio.run(engine.update("Orders", "o1", {"customer": "missing"}))
        orders = fetch(engine, "Orders")
        asyncio.run(ExpandOrchestrator(engine, engine).expand("Orders", orders, "customer"))
        assert orders[0]["customer"] == "missing"
        assert orders[1]["customer"]["name"] == "Jane Doe"

    def test_nested_select_keeps_nested_expand(self, engine):
        orders = fetch(engine, "Orders")
        asyncio.run(
            ExpandOrchestrator(engine, engine).expand(
                "Orders", orders, "customer($select=name;$expand=company)"
            )
        )
        customer = orders[0]["customer"]
        assert customer["name"] == "John Smith"
        assert customer["company"]["name"] == "Acme"
        assert "email" not in customer

    def test_options_past_depth_limit_not_parsed(self, engine):
        orders = fetch(engine, "Orders")
        asyncio.run(
            ExpandOrchestrator(engine, engine, max_depth=1).expand(
                "Orders", orders, "customer($expand=company($bogus=1))"
            )
        )
        assert orders[0]["customer"]["name"] == "John Smith"
        assert orders[0]["customer"]["company"] == "cm1"
