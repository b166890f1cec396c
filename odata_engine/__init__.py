"""
OData V4 protocol engine (odata_engine)
=======================================

Translates OData V4 requests into calls against a generic record store:
``$filter`` parsing, query options, ``$expand``, ``$metadata``, ETags and
``$batch`` with changesets.

Usage
-----
>>> from odata_engine import InMemoryEngine, ODataRequestHandler, ODataServiceConfig
>>> engine = InMemoryEngine([{"name": "Products", "fields": {"name": {"type": "text"}}}])
>>> handler = ODataRequestHandler(ODataServiceConfig(), engine, engine)

Subpackages
-----------
- odata_engine.core: configuration, errors, collaborator interfaces, record stores
- odata_engine.odata: the protocol core (filter, query, expand, metadata, etag, batch)
- odata_engine.api: FastAPI transport

"""

__version__ = "0.1.0"

from odata_engine.core.config import ODataServiceConfig
from odata_engine.core.errors import (
    ODataError,
    ODataErrorCode,
    ODataValidationError,
    map_error,
)
from odata_engine.core.registry import (
    DataEngine,
    FieldMetadata,
    MetadataRegistry,
    ObjectMetadata,
)
from odata_engine.core.memory import InMemoryEngine
from odata_engine.core.session import ODataUpstreamError, RemoteConfig, RemoteEngine
from odata_engine.odata.handler import ODataRequestHandler
from odata_engine.odata.messages import ODataRequest, ODataResponse

__all__ = [
    # Version
    "__version__",
    # Core
    "ODataServiceConfig",
    "ODataError",
    "ODataErrorCode",
    "ODataValidationError",
    "map_error",
    "DataEngine",
    "FieldMetadata",
    "MetadataRegistry",
    "ObjectMetadata",
    "InMemoryEngine",
    "RemoteConfig",
    "RemoteEngine",
    "ODataUpstreamError",
    # Protocol
    "ODataRequestHandler",
    "ODataRequest",
    "ODataResponse",
]
