"""
odata_engine.core.registry - Collaborator interfaces
=====================================================

The protocol core never touches storage directly. It talks to two
capabilities that the host application injects:

- MetadataRegistry: which object types exist and what their fields are
- DataEngine: asynchronous CRUD against those object types

Both are abstract base classes; an injected collaborator must subclass
them instead of being probed for methods at call time.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from odata_engine.odata.query import QueryDescriptor


RELATIONSHIP_TYPES = frozenset({"lookup", "master_detail"})

# Identifier field used for related-record lookups
ID_FIELD = "_id"


@dataclass
class FieldMetadata:
    """
    Description of a single field of an object type.

    Attributes
    ----------
    type : str
        Field type, e.g. "text", "number", "lookup"
    reference : str, optional
        Target object type for relationship fields
    label : str, optional
        Display label
    required : bool
        Whether the field must be set on create
    """

    type: str = "text"
    reference: Optional[str] = None
    label: Optional[str] = None
    required: bool = False

    @property
    def is_relationship(self) -> bool:
        return self.type in RELATIONSHIP_TYPES and bool(self.reference)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldMetadata":
        return cls(
            type=str(data.get("type") or "text"),
            reference=data.get("reference") or data.get("reference_to"),
            label=data.get("label"),
            required=bool(data.get("required", False)),
        )


@dataclass
class ObjectMetadata:
    """Registered object type: the unit exposed as one entity set."""

    name: str
    fields: Dict[str, FieldMetadata] = field(default_factory=dict)
    label: Optional[str] = None

    def get_field(self, name: str) -> Optional[FieldMetadata]:
        return self.fields.get(name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMetadata":
        raw_fields = data.get("fields") or (data.get("content") or {}).get("fields") or {}
        return cls(
            name=str(data.get("name") or data.get("id") or ""),
            label=data.get("label"),
            fields={
                fname: f if isinstance(f, FieldMetadata) else FieldMetadata.from_dict(f or {})
                for fname, f in raw_fields.items()
            },
        )


class MetadataRegistry(ABC):
    """Lookup of registered object types."""

    @abstractmethod
    def list_object_types(self) -> List[str]:
        """Names of all registered object types."""

    @abstractmethod
    def get_object_metadata(self, name: str) -> Optional[ObjectMetadata]:
        """Metadata for one object type, or None when it is not registered."""


class DataEngine(ABC):
    """
    Asynchronous CRUD over registered object types.

    Implementations must be safe for concurrent calls from several
    in-flight requests; the protocol core holds no locks.
    """

    @abstractmethod
    async def find(self, name: str, query: "QueryDescriptor") -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get(self, name: str, id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def create(self, name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update(self, name: str, id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply ``data`` to the record; None when the record does not exist."""

    @abstractmethod
    async def delete(self, name: str, id: str) -> bool:
        """Delete the record; False when the record does not exist."""

    @abstractmethod
    async def count(self, name: str, query: "QueryDescriptor") -> int:
        """Count records matching the query's filter and search only."""
