"""
Tests for odata_engine.core.config module.
"""

import pytest

from odata_engine.core.config import ODataServiceConfig, _env_bool


class TestServiceConfig:
    """Tests for ODataServiceConfig."""

    def test_defaults(self):
        cfg = ODataServiceConfig()
        assert cfg.port == 8080
        assert cfg.base_path == "/odata"
        assert cfg.namespace == "ObjectStack"
        assert cfg.max_expand_depth == 3
        assert cfg.enable_batch and cfg.enable_search and cfg.enable_etags
        assert not cfg.debug

    @pytest.mark.parametrize("raw,expected", [
        ("/odata", "/odata"),
        ("odata/", "/odata"),
        ("/api/v4/", "/api/v4"),
        ("/", ""),
        ("", ""),
    ])
    def test_base_path_normalized(self, raw, expected):
        assert ODataServiceConfig(base_path=raw).base_path == expected

    def test_rejects_negative_depth(self):
        with pytest.raises(ValueError):
            ODataServiceConfig(max_expand_depth=-1)

    def test_rejects_empty_namespace(self):
        with pytest.raises(ValueError):
            ODataServiceConfig(namespace="")

    def test_frozen(self):
        cfg = ODataServiceConfig()
        with pytest.raises(AttributeError):
            cfg.port = 1


class TestFromEnv:
    """Tests for ODataServiceConfig.from_env."""

    def test_reads_mapping(self):
        cfg = ODataServiceConfig.from_env({
            "ODATA_PORT": "9000",
            "ODATA_BASE_PATH": "/svc/",
            "ODATA_NAMESPACE": "Shop",
            "ODATA_MAX_EXPAND_DEPTH": "1",
            "ODATA_ENABLE_BATCH": "false",
            "ODATA_DEBUG": "1",
        })
        assert cfg.port == 9000
        assert cfg.base_path == "/svc"
        assert cfg.namespace == "Shop"
        assert cfg.max_expand_depth == 1
        assert cfg.enable_batch is False
        assert cfg.debug is True

    def test_empty_mapping_gives_defaults(self):
        assert ODataServiceConfig.from_env({}) == ODataServiceConfig()

    def test_reads_os_environ(self, monkeypatch):
        monkeypatch.setenv("ODATA_ENABLE_ETAGS", "off")
        cfg = ODataServiceConfig.from_env(load_dotenv_file=False)
        assert cfg.enable_etags is False

    @pytest.mark.parametrize("raw,expected", [
        ("true", True),
        ("yes", True),
        ("False", False),
        ("0", False),
        ("OFF", False),
        ("  ", True),
    ])
    def test_env_bool(self, raw, expected):
        assert _env_bool({"FLAG": raw}, "FLAG", True) is expected
