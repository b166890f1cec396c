"""
odata_engine.odata - OData V4 protocol core
============================================

- filter: ``$filter`` tokenizer and parser
- query: query options -> QueryDescriptor
- expand: ``$expand`` parsing and resolution
- metadata: ``$metadata`` EDMX and the service document
- etag: entity tags and preconditions
- batch: ``$batch`` and changesets
- handler: single-request routing

"""

from odata_engine.odata.filter import FilterNode, parse_filter
from odata_engine.odata.query import QueryDescriptor, translate_query_options
from odata_engine.odata.expand import ExpandOrchestrator, ExpandSpec, parse_expand
from odata_engine.odata.metadata import render_metadata, service_document
from odata_engine.odata.etag import compute_etag, validate_precondition
from odata_engine.odata.batch import BatchExecutor, CompensationLog, parse_batch
from odata_engine.odata.messages import ODataRequest, ODataResponse
from odata_engine.odata.handler import ODataRequestHandler

__all__ = [
    "FilterNode",
    "parse_filter",
    "QueryDescriptor",
    "translate_query_options",
    "ExpandOrchestrator",
    "ExpandSpec",
    "parse_expand",
    "render_metadata",
    "service_document",
    "compute_etag",
    "validate_precondition",
    "BatchExecutor",
    "CompensationLog",
    "parse_batch",
    "ODataRequest",
    "ODataResponse",
    "ODataRequestHandler",
]
