"""
odata_engine.core.config - Service configuration
=================================================

One immutable configuration value, built once at startup either
explicitly or from ``ODATA_*`` environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv


_FALSE_VALUES = {"false", "0", "no", "off"}


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in _FALSE_VALUES


def load_env_file(path: Optional[Path] = None) -> Optional[Path]:
    """
    Load a ``.env`` file into ``os.environ``.

    Looks in the current directory first, then next to the package.
    Returns the path that was loaded, if any.
    """
    env_path = path or Path.cwd() / ".env"
    if not env_path.exists():
        env_path = Path(__file__).resolve().parent.parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        return env_path
    return None


@dataclass(frozen=True)
class ODataServiceConfig:
    """
    Configuration for the OData V4 service.

    Parameters
    ----------
    port : int
        Port used by the uvicorn runner (default: 8080)
    host : str
        Host used by the uvicorn runner (default: "0.0.0.0")
    base_path : str
        Path prefix of every OData endpoint (default: "/odata")
    enable_cors : bool
        Add permissive CORS headers and answer OPTIONS with 204
    namespace : str
        Schema namespace in the $metadata document
    max_expand_depth : int
        Maximum depth for nested $expand (default: 3)
    enable_batch : bool
        Serve POST /$batch
    enable_search : bool
        Pass $search through to the data engine
    enable_etags : bool
        Emit ETag headers and honour If-Match / If-None-Match
    debug : bool
        Include stack traces in 5xx error bodies

    Examples
    --------
    >>> cfg = ODataServiceConfig(base_path="/api/odata/", max_expand_depth=2)
    >>> cfg.base_path
    '/api/odata'
    """

    port: int = 8080
    host: str = "0.0.0.0"
    base_path: str = "/odata"
    enable_cors: bool = True
    namespace: str = "ObjectStack"
    max_expand_depth: int = 3
    enable_batch: bool = True
    enable_search: bool = True
    enable_etags: bool = True
    debug: bool = False

    def __post_init__(self) -> None:
        base = "/" + (self.base_path or "").strip().strip("/")
        object.__setattr__(self, "base_path", "" if base == "/" else base)
        if int(self.max_expand_depth) < 0:
            raise ValueError("max_expand_depth must be >= 0")
        if not self.namespace:
            raise ValueError("namespace must not be empty")

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        *,
        load_dotenv_file: bool = True,
    ) -> "ODataServiceConfig":
        """
        Build a configuration from ``ODATA_*`` environment variables.

        Parameters
        ----------
        env : mapping, optional
            Variables to read instead of ``os.environ``
        load_dotenv_file : bool
            Load a ``.env`` file first (only when reading ``os.environ``)
        """
        if env is None:
            if load_dotenv_file:
                load_env_file()
            env = os.environ

        return cls(
            port=int(env.get("ODATA_PORT", "8080")),
            host=env.get("ODATA_HOST", "0.0.0.0"),
            base_path=env.get("ODATA_BASE_PATH", "/odata"),
            enable_cors=_env_bool(env, "ODATA_ENABLE_CORS", True),
            namespace=env.get("ODATA_NAMESPACE", "ObjectStack"),
            max_expand_depth=int(env.get("ODATA_MAX_EXPAND_DEPTH", "3")),
            enable_batch=_env_bool(env, "ODATA_ENABLE_BATCH", True),
            enable_search=_env_bool(env, "ODATA_ENABLE_SEARCH", True),
            enable_etags=_env_bool(env, "ODATA_ENABLE_ETAGS", True),
            debug=_env_bool(env, "ODATA_DEBUG", False),
        )
