"""Tests for the maps engine configuration"""

import os
from unittest.mock import patch

from ddpmaps.core.maps.config import MapsConfig, MapsConfigManager


class TestMapsConfigManager:
    """Test loading and validating the configuration"""

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        """Test defaults when nothing is set"""
        config = MapsConfigManager().get_config()
        assert config.api_base_url == "http://localhost:8002/api/charts"
        assert config.dedupe_interval == 2.0
        assert config.export_settle_delay == 0.5
        assert (config.export_width_px, config.export_height_px) == (800, 600)
        assert config.request_timeout is None

    @patch.dict(
        os.environ,
        {
            "DALGO_MAPS_API_BASE_URL": "https://dalgo.example.org/api/charts/",
            "DALGO_MAPS_API_TOKEN": "token",
            "DALGO_MAPS_ORG_SLUG": "acme",
            "DALGO_MAPS_REQUEST_TIMEOUT": "12.5",
            "DALGO_MAPS_DEDUPE_INTERVAL_MS": "500",
            "DALGO_MAPS_EXPORT_WIDTH_PX": "1600",
        },
        clear=True,
    )
    def test_environment_overrides(self):
        """Test environment variables override the defaults"""
        config = MapsConfigManager().get_config()
        assert config.api_base_url == "https://dalgo.example.org/api/charts"
        assert config.api_token == "token"
        assert config.org_slug == "acme"
        assert config.request_timeout == 12.5
        assert config.dedupe_interval == 0.5
        assert config.export_width_px == 1600

    @patch.dict(os.environ, {}, clear=True)
    def test_reload_config(self):
        """Test reload picks up changed variables"""
        manager = MapsConfigManager()
        with patch.dict(os.environ, {"DALGO_MAPS_ROOT_REGION_TYPE": "district"}):
            manager.reload_config()
        assert manager.get_config().root_region_type == "district"

    def test_validate_config(self):
        """Test invalid values are reported as errors"""
        manager = MapsConfigManager()
        manager._config = MapsConfig(api_base_url="ftp://nope", export_dpi=0, api_token="t")
        results = manager.validate_config()
        assert results["valid"] is False
        assert len(results["errors"]) == 2
        assert results["warnings"] == []

    def test_validate_config_warnings(self):
        """Test a missing token is only a warning"""
        manager = MapsConfigManager()
        manager._config = MapsConfig()
        results = manager.validate_config()
        assert results["valid"] is True
        assert any("token" in warning for warning in results["warnings"])
