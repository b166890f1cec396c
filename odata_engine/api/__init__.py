"""
odata_engine.api - FastAPI transport
=====================================

Serves the OData handler over HTTP.

Usage
-----
>>> from odata_engine.api import create_app
>>> app = create_app()
>>> # Run with: uvicorn --factory odata_engine.api:create_app

Or run directly:
>>> python -m odata_engine.api

"""

from odata_engine.api.gateway import build_engine, create_app

__all__ = [
    "build_engine",
    "create_app",
]
