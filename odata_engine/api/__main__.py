"""
odata_engine.api - Run as module

Usage: python -m odata_engine.api
"""

import logging
import os

import uvicorn

from odata_engine.core.config import ODataServiceConfig


def main():
    """Run the OData service."""
    config = ODataServiceConfig.from_env()
    reload = os.environ.get("ODATA_RELOAD", "false").lower() == "true"
    log_level = os.environ.get("ODATA_LOG_LEVEL", "info").lower()

    logging.basicConfig(level=log_level.upper())
    logging.getLogger("odata_engine").info(
        "Starting OData service on %s:%s%s", config.host, config.port, config.base_path or "/"
    )

    uvicorn.run(
        "odata_engine.api.gateway:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=reload,
        log_level=log_level,
    )


if __name__ == "__main__":
    main()
