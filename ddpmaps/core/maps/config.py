"""
Maps engine configuration.
Centralizes environment variable handling for the drill-down and export engine.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from ddpmaps.utils.custom_logger import CustomLogger

load_dotenv()

logger = CustomLogger("ddpmaps.config")


@dataclass
class MapsConfig:
    """Settings shared by the api client, the overlay fetcher and the export renderer."""

    api_base_url: str = "http://localhost:8002/api/charts"
    api_token: Optional[str] = None
    org_slug: Optional[str] = None
    request_timeout: Optional[float] = None
    dedupe_interval_ms: int = 2000
    default_country_code: str = "IND"
    root_region_type: str = "state"
    export_width_px: int = 800
    export_height_px: int = 600
    export_dpi: int = 100
    export_settle_delay_ms: int = 500

    @property
    def dedupe_interval(self) -> float:
        return self.dedupe_interval_ms / 1000

    @property
    def export_settle_delay(self) -> float:
        return self.export_settle_delay_ms / 1000


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    return float(value)


class MapsConfigManager:
    """
    Loads the maps configuration from environment variables
    and validates it.
    """

    def __init__(self):
        self._config = None
        self._load_config()

    def _load_config(self):
        """Load configuration from environment variables."""
        self._config = MapsConfig(
            api_base_url=os.getenv(
                "DALGO_MAPS_API_BASE_URL", "http://localhost:8002/api/charts"
            ).rstrip("/"),
            api_token=os.getenv("DALGO_MAPS_API_TOKEN"),
            org_slug=os.getenv("DALGO_MAPS_ORG_SLUG"),
            request_timeout=_optional_float(os.getenv("DALGO_MAPS_REQUEST_TIMEOUT")),
            dedupe_interval_ms=int(os.getenv("DALGO_MAPS_DEDUPE_INTERVAL_MS", "2000")),
            default_country_code=os.getenv("DALGO_MAPS_DEFAULT_COUNTRY_CODE", "IND"),
            root_region_type=os.getenv("DALGO_MAPS_ROOT_REGION_TYPE", "state"),
            export_width_px=int(os.getenv("DALGO_MAPS_EXPORT_WIDTH_PX", "800")),
            export_height_px=int(os.getenv("DALGO_MAPS_EXPORT_HEIGHT_PX", "600")),
            export_dpi=int(os.getenv("DALGO_MAPS_EXPORT_DPI", "100")),
            export_settle_delay_ms=int(os.getenv("DALGO_MAPS_EXPORT_SETTLE_DELAY_MS", "500")),
        )
        logger.info(f"Maps configuration loaded. API base url: {self._config.api_base_url}")

    def get_config(self) -> MapsConfig:
        return self._config

    def reload_config(self):
        """Reload configuration from environment variables."""
        self._load_config()
        logger.info("Maps configuration reloaded")

    def validate_config(self) -> Dict[str, Any]:
        """
        Validate the current configuration.

        Returns:
            Dictionary with validation results
        """
        config = self._config
        results = {"valid": True, "errors": [], "warnings": []}

        if not config.api_base_url.startswith(("http://", "https://")):
            results["valid"] = False
            results["errors"].append(f"API base url '{config.api_base_url}' is not an http url")

        if config.export_width_px <= 0 or config.export_height_px <= 0:
            results["valid"] = False
            results["errors"].append("Export container size must be positive")

        if config.export_dpi <= 0:
            results["valid"] = False
            results["errors"].append("Export dpi must be positive")

        if config.dedupe_interval_ms < 0:
            results["valid"] = False
            results["errors"].append("Dedupe interval cannot be negative")

        if not config.api_token:
            results["warnings"].append("No API token configured; requests will be anonymous")

        if config.export_settle_delay_ms == 0:
            results["warnings"].append("Export settle delay is 0; layout may be incomplete")

        return results


# Global instance
maps_config = MapsConfigManager()


def get_maps_config() -> MapsConfig:
    """Get the maps configuration."""
    return maps_config.get_config()


def validate_maps_config() -> Dict[str, Any]:
    """Validate the maps configuration."""
    return maps_config.validate_config()
