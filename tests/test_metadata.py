"""
Tests for odata_engine.odata.metadata module.
"""

import xml.etree.ElementTree as ET

import pytest

from odata_engine.core.memory import InMemoryEngine
from odata_engine.odata.metadata import (
    EDM_NS,
    EDMX_NS,
    map_field_type_to_edm,
    render_metadata,
    service_document,
)


def parse(xml_text):
    return ET.fromstring(xml_text.split("\n", 1)[1])


class TestFieldTypeMapping:
    """Tests for map_field_type_to_edm."""

    @pytest.mark.parametrize("field_type,edm", [
        ("text", "Edm.String"),
        ("email", "Edm.String"),
        ("number", "Edm.Double"),
        ("currency", "Edm.Double"),
        ("autonumber", "Edm.Int32"),
        ("boolean", "Edm.Boolean"),
        ("date", "Edm.Date"),
        ("datetime", "Edm.DateTimeOffset"),
        ("time", "Edm.TimeOfDay"),
    ])
    def test_known_types(self, field_type, edm):
        assert map_field_type_to_edm(field_type) == edm

    def test_unknown_type_falls_back_with_warning(self, caplog):
        with caplog.at_level("WARNING", logger="odata_engine.metadata"):
            assert map_field_type_to_edm("hologram") == "Edm.String"
        assert "hologram" in caplog.text


class TestRenderMetadata:
    """Tests for render_metadata."""

    def test_document_structure(self, engine):
        xml_text = render_metadata(engine, "ObjectStack")
        assert xml_text.startswith('<?xml version="1.0" encoding="UTF-8"?>')

        root = parse(xml_text)
        assert root.tag == f"{{{EDMX_NS}}}Edmx"
        assert root.get("Version") == "4.0"
        schema = root.find(f"{{{EDMX_NS}}}DataServices/{{{EDM_NS}}}Schema")
        assert schema.get("Namespace") == "ObjectStack"

        types = {t.get("Name"): t for t in schema.findall(f"{{{EDM_NS}}}EntityType")}
        assert set(types) == set(engine.list_object_types())

        products = types["Products"]
        assert products.find(f"{{{EDM_NS}}}Key/{{{EDM_NS}}}PropertyRef").get("Name") == "id"
        props = {p.get("Name"): p for p in products.findall(f"{{{EDM_NS}}}Property")}
        assert props["id"].get("Nullable") == "false"
        assert props["price"].get("Type") == "Edm.Double"
        assert props["in_stock"].get("Type") == "Edm.Boolean"

    def test_entity_container(self, engine):
        root = parse(render_metadata(engine, "Shop"))
        container = root.find(f".//{{{EDM_NS}}}EntityContainer")
        sets = {s.get("Name"): s.get("EntityType") for s in container}
        assert sets["Orders"] == "Shop.Orders"

    def test_explicit_id_field_not_duplicated(self):
        engine = InMemoryEngine([{"name": "Things", "fields": {"id": {"type": "text"}, "n": {"type": "number"}}}])
        root = parse(render_metadata(engine, "NS"))
        names = [p.get("Name") for p in root.iter(f"{{{EDM_NS}}}Property")]
        assert names == ["id", "n"]

    def test_deterministic(self, engine):
        assert render_metadata(engine, "NS") == render_metadata(engine, "NS")


class TestServiceDocument:
    """Tests for service_document."""

    def test_lists_entity_sets(self, engine):
        doc = service_document(engine, "/odata")
        assert doc["@odata.context"] == "/odata/$metadata"
        assert {"name": "Products", "kind": "EntitySet", "url": "Products"} in doc["value"]
