"""
odata_engine.api.gateway - FastAPI OData service
=================================================

Mounts the OData request handler under the configured base path. All
OData routing happens in ``ODataRequestHandler``; this module only
moves requests and responses between FastAPI and the handler.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Mapping, Optional

import requests
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from odata_engine import __version__
from odata_engine.core.config import ODataServiceConfig
from odata_engine.core.memory import InMemoryEngine
from odata_engine.core.registry import DataEngine, MetadataRegistry
from odata_engine.core.session import ODataUpstreamError, RemoteConfig, RemoteEngine
from odata_engine.odata.handler import ODataRequestHandler
from odata_engine.odata.messages import ODataRequest

logger = logging.getLogger("odata_engine.api")

ODATA_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def build_engine(env: Optional[Mapping[str, str]] = None) -> DataEngine:
    """
    Build the record store from environment variables.

    ``ODATA_REMOTE_URL`` selects a RemoteEngine (``ODATA_REMOTE_TOKEN``,
    ``ODATA_TIMEOUT``, ``ODATA_RETRIES``, ``ODATA_BACKOFF`` tune it);
    otherwise an empty InMemoryEngine is returned.
    """
    env = os.environ if env is None else env
    url = (env.get("ODATA_REMOTE_URL") or "").strip()
    if not url:
        return InMemoryEngine()

    engine = RemoteEngine(
        RemoteConfig(
            base_url=url,
            token=env.get("ODATA_REMOTE_TOKEN") or None,
            timeout=float(env.get("ODATA_TIMEOUT", "30")),
            retries=int(env.get("ODATA_RETRIES", "3")),
            backoff=float(env.get("ODATA_BACKOFF", "0.5")),
        )
    )
    try:
        engine.refresh()
    except (ODataUpstreamError, requests.RequestException) as e:
        # Allow startup while the remote server is down; refresh() can be retried
        logger.warning("could not load metadata from %s: %s", url, e)
    return engine


def create_app(
    config: Optional[ODataServiceConfig] = None,
    registry: Optional[MetadataRegistry] = None,
    engine: Optional[DataEngine] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Parameters
    ----------
    config : ODataServiceConfig, optional
        Service configuration. If None, reads ``ODATA_*`` environment variables.
    registry : MetadataRegistry, optional
        Metadata source. Defaults to ``engine`` when it implements both.
    engine : DataEngine, optional
        Record store. If None, built by ``build_engine()``.

    Returns
    -------
    FastAPI
        Configured FastAPI application
    """
    config = config or ODataServiceConfig.from_env()
    engine = engine if engine is not None else build_engine()
    if registry is None:
        registry = engine  # type: ignore[assignment]

    handler = ODataRequestHandler(config, registry, engine)  # type: ignore[arg-type]

    app = FastAPI(
        title="OData V4 Service",
        description="OData V4 endpoint over registered object types.",
        version=__version__,
    )
    app.state.odata = handler

    if config.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["ETag", "Location"],
        )

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------

    @app.get("/health")
    def health() -> Dict[str, Any]:
        """Health check endpoint."""
        return {
            "ok": True,
            "version": __version__,
            "entitySets": len(handler.registry.list_object_types()),
        }

    async def odata(request: Request) -> Response:
        path = request.path_params.get("path", "")
        body = await request.body()
        result = await handler.handle(
            ODataRequest(
                method=request.method,
                path="/" + path,
                query_string=request.url.query,
                headers=dict(request.headers),
                body=body,
            )
        )
        return Response(content=result.body, status_code=result.status, headers=result.headers)

    base = config.base_path
    app.add_api_route(base or "/", odata, methods=ODATA_METHODS, include_in_schema=False)
    app.add_api_route(base + "/{path:path}", odata, methods=ODATA_METHODS, include_in_schema=False)

    logger.debug("OData service mounted at %s", base or "/")
    return app
