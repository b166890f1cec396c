"""
odata_engine.odata.metadata - $metadata and service document
=============================================================

Renders the EDMX (CSDL XML) description of every registered object
type, and the JSON service document listing the entity sets.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
import xml.etree.ElementTree as ET

from odata_engine.core.registry import MetadataRegistry

logger = logging.getLogger("odata_engine.metadata")


EDMX_NS = "http://docs.oasis-open.org/odata/ns/edmx"
EDM_NS = "http://docs.oasis-open.org/odata/ns/edm"

# Field type -> EDM primitive type
EDM_TYPE_MAP: Dict[str, str] = {
    # text family
    "text": "Edm.String",
    "textarea": "Edm.String",
    "markdown": "Edm.String",
    "html": "Edm.String",
    "email": "Edm.String",
    "url": "Edm.String",
    "phone": "Edm.String",
    "password": "Edm.String",
    "select": "Edm.String",
    "lookup": "Edm.String",
    "master_detail": "Edm.String",
    "file": "Edm.String",
    "image": "Edm.String",
    "object": "Edm.String",
    "formula": "Edm.String",
    "summary": "Edm.String",
    # numeric family
    "number": "Edm.Double",
    "currency": "Edm.Double",
    "percent": "Edm.Double",
    "autonumber": "Edm.Int32",
    # boolean
    "boolean": "Edm.Boolean",
    # date family
    "date": "Edm.Date",
    "datetime": "Edm.DateTimeOffset",
    "time": "Edm.TimeOfDay",
}


def map_field_type_to_edm(field_type: str) -> str:
    """
    Map a field type to its EDM type.

    Unknown types fall back to ``Edm.String`` and are logged.
    """
    edm = EDM_TYPE_MAP.get(field_type)
    if edm is None:
        logger.warning("Unknown field type %r, mapping to Edm.String", field_type)
        return "Edm.String"
    return edm


def render_metadata(registry: MetadataRegistry, namespace: str) -> str:
    """
    Render the ``$metadata`` EDMX document.

    Pure function of the registry contents: each object type becomes an
    EntityType keyed on a non-nullable ``id`` and an EntitySet in a single
    ``Container``.

    Parameters
    ----------
    registry : MetadataRegistry
        Registered object types
    namespace : str
        Schema namespace

    Returns
    -------
    str
        XML document, including the XML declaration
    """
    root = ET.Element("edmx:Edmx", {"xmlns:edmx": EDMX_NS, "Version": "4.0"})
    services = ET.SubElement(root, "edmx:DataServices")
    schema = ET.SubElement(services, "Schema", {"xmlns": EDM_NS, "Namespace": namespace})

    names = list(registry.list_object_types())
    for name in names:
        meta = registry.get_object_metadata(name)
        entity_type = ET.SubElement(schema, "EntityType", {"Name": name})
        key = ET.SubElement(entity_type, "Key")
        ET.SubElement(key, "PropertyRef", {"Name": "id"})
        ET.SubElement(
            entity_type,
            "Property",
            {"Name": "id", "Type": "Edm.String", "Nullable": "false"},
        )
        if meta is None:
            continue
        for field_name, fld in meta.fields.items():
            if field_name == "id":
                continue
            ET.SubElement(
                entity_type,
                "Property",
                {"Name": field_name, "Type": map_field_type_to_edm(fld.type), "Nullable": "true"},
            )

    container = ET.SubElement(schema, "EntityContainer", {"Name": "Container"})
    for name in names:
        ET.SubElement(
            container,
            "EntitySet",
            {"Name": name, "EntityType": f"{namespace}.{name}"},
        )

    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body


def service_document(registry: MetadataRegistry, base_path: str) -> Dict[str, Any]:
    """JSON service document: one entry per entity set."""
    value: List[Dict[str, str]] = [
        {"name": name, "kind": "EntitySet", "url": name}
        for name in registry.list_object_types()
    ]
    return {"@odata.context": f"{base_path}/$metadata", "value": value}
