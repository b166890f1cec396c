"""
Tests for odata_engine.core.memory module.
"""

import asyncio

import pytest

from odata_engine.core.memory import (
    InMemoryEngine,
    NotFoundError,
    ValidationError,
    apply_query,
    evaluate_filter,
)
from odata_engine.odata.filter import parse_filter
from odata_engine.odata.query import OrderBy, QueryDescriptor


RECORD = {"name": "Laptop", "price": 1200, "in_stock": True, "note": None}


class TestEvaluateFilter:
    """Tests for evaluate_filter."""

    @pytest.mark.parametrize("expr,expected", [
        ("price gt 1000", True),
        ("price le 1000", False),
        ("name eq 'Laptop'", True),
        ("name ne 'Laptop'", False),
        ("not (price lt 10)", True),
        ("startswith(name, 'Lap')", True),
        ("endswith(name, 'top')", True),
        ("contains(name, 'xyz')", False),
        ("in_stock eq true and price gt 5", True),
        ("price gt 5000 or name eq 'Laptop'", True),
        ("note eq null", True),
    ])
    def test_expressions(self, expr, expected):
        assert evaluate_filter(parse_filter(expr), RECORD) is expected

    def test_none_matches_all(self):
        assert evaluate_filter(None, RECORD)

    def test_incompatible_ordering_is_false(self):
        assert not evaluate_filter(parse_filter("name gt 5"), RECORD)
        assert not evaluate_filter(parse_filter("note lt 5"), RECORD)


class TestApplyQuery:
    """Tests for apply_query."""

    ROWS = [
        {"_id": "1", "name": "b", "rank": 2},
        {"_id": "2", "name": "a", "rank": None},
        {"_id": "3", "name": "c", "rank": 2},
        {"_id": "4", "name": "Alpha", "rank": 1},
    ]

    def test_none_sorts_first(self):
        rows = apply_query(self.ROWS, QueryDescriptor(order_by=[OrderBy("rank")]))
        assert [r["_id"] for r in rows] == ["2", "4", "1", "3"]

    def test_multi_key_sort(self):
        query = QueryDescriptor(order_by=[OrderBy("rank", "desc"), OrderBy("name", "desc")])
        assert [r["_id"] for r in apply_query(self.ROWS, query)] == ["3", "1", "4", "2"]

    def test_paging(self):
        query = QueryDescriptor(order_by=[OrderBy("_id")], offset=1, limit=2)
        assert [r["_id"] for r in apply_query(self.ROWS, query)] == ["2", "3"]

    def test_search_is_case_insensitive(self):
        rows = apply_query(self.ROWS, QueryDescriptor(search="ALP"))
        assert [r["_id"] for r in rows] == ["4"]

    def test_projection_keeps_keys(self):
        rows = apply_query(self.ROWS[:1], QueryDescriptor(fields=["rank"]))
        assert rows == [{"_id": "1", "rank": 2}]


class TestInMemoryEngine:
    """Tests for InMemoryEngine CRUD."""

    def test_registry(self, engine):
        assert "Products" in engine.list_object_types()
        meta = engine.get_object_metadata("Products")
        assert meta.get_field("category").reference == "Categories"
        assert engine.get_object_metadata("Nope") is None

    def test_create_assigns_system_fields(self, engine):
        record = asyncio.run(engine.create("Categories", {"name": "Toys", "id": "ignored"}))
        assert record["_id"] == "ignored" == record["id"]
        assert record["created_at"] == record["updated_at"]
        assert record["updated_at"].endswith("Z")

    def test_generated_id(self, engine):
        record = asyncio.run(engine.create("Categories", {"name": "Toys"}))
        assert len(record["_id"]) == 32

    def test_required_field(self, engine):
        with pytest.raises(ValidationError):
            asyncio.run(engine.create("Products", {"price": 1}))

    def test_duplicate_id(self, engine):
        with pytest.raises(ValidationError):
            asyncio.run(engine.create("Products", {"_id": "p1", "name": "Again"}))

    def test_update_changes_stamp(self, engine):
        before = asyncio.run(engine.get("Products", "p1"))
        after = asyncio.run(engine.update("Products", "p1", {"price": 1, "_id": "hijack"}))
        assert after["_id"] == "p1"
        assert after["updated_at"] > before["updated_at"]
        assert after["created_at"] == before["created_at"]

    def test_stamps_strictly_increase(self):
        engine = InMemoryEngine()
        stamps = [engine._stamp() for _ in range(50)]
        assert stamps == sorted(set(stamps))

    def test_returns_copies(self, engine):
        record = asyncio.run(engine.get("Products", "p1"))
        record["price"] = 0
        assert asyncio.run(engine.get("Products", "p1"))["price"] == 1200

    def test_missing_records(self, engine):
        assert asyncio.run(engine.get("Products", "zzz")) is None
        assert asyncio.run(engine.update("Products", "zzz", {})) is None
        assert asyncio.run(engine.delete("Products", "zzz")) is False

    def test_count_ignores_paging(self, engine):
        query = QueryDescriptor(filter=parse_filter("category eq 'c1'"), limit=1, offset=2)
        assert asyncio.run(engine.count("Products", query)) == 3

    def test_unregistered_set(self, engine):
        with pytest.raises(NotFoundError):
            asyncio.run(engine.find("Nope", QueryDescriptor()))

    def test_register_requires_name(self):
        with pytest.raises(ValueError):
            InMemoryEngine([{"fields": {}}])
