"""
odata_engine.core - Configuration, errors and collaborators
============================================================

- ODataServiceConfig: immutable service configuration
- ODataErrorCode / ODataError / map_error: the error taxonomy
- MetadataRegistry / DataEngine: interfaces the protocol core calls into

The record stores live in ``odata_engine.core.memory`` and
``odata_engine.core.session``.

"""

from odata_engine.core.config import ODataServiceConfig, load_env_file
from odata_engine.core.errors import (
    ODataError,
    ODataErrorCode,
    ODataErrorDetail,
    ODataValidationError,
    create_odata_error,
    map_error,
)
from odata_engine.core.registry import (
    ID_FIELD,
    DataEngine,
    FieldMetadata,
    MetadataRegistry,
    ObjectMetadata,
)

__all__ = [
    "ODataServiceConfig",
    "load_env_file",
    "ODataError",
    "ODataErrorCode",
    "ODataErrorDetail",
    "ODataValidationError",
    "create_odata_error",
    "map_error",
    "ID_FIELD",
    "DataEngine",
    "FieldMetadata",
    "MetadataRegistry",
    "ObjectMetadata",
]
