"""Client for the charts API endpoints the maps engine consumes"""

from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ddpmaps.core.maps.config import MapsConfig, get_maps_config
from ddpmaps.core.maps.errors import MapFetchError
from ddpmaps.schemas.map_schema import (
    GeoJSONDetail,
    MapChart,
    MapDataOverlayPayload,
    MapDataOverlayResponse,
    Region,
    RegionGeoJSON,
)
from ddpmaps.utils.custom_logger import CustomLogger
from ddpmaps.utils.http import HttpError, async_dalgo_get, async_dalgo_post

logger = CustomLogger("ddpmaps.api")


class MapsApiClient:
    """Async wrapper around the region, geojson, chart and overlay endpoints"""

    def __init__(self, config: Optional[MapsConfig] = None):
        self.config = config or get_maps_config()

    def _url(self, path: str) -> str:
        return f"{self.config.api_base_url}/{path.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.config.api_token:
            headers["Authorization"] = f"Bearer {self.config.api_token}"
        if self.config.org_slug:
            headers["x-dalgo-org"] = self.config.org_slug
        return headers

    async def _get(self, resource: str, path: str, **kwargs) -> Any:
        try:
            return await async_dalgo_get(
                self._url(path),
                headers=self._headers(),
                timeout=self.config.request_timeout,
                **kwargs,
            )
        except HttpError as error:
            raise MapFetchError(resource, error.message, error.status_code) from error

    async def _post(self, resource: str, path: str, body: dict) -> Any:
        try:
            return await async_dalgo_post(
                self._url(path),
                json=body,
                headers=self._headers(),
                timeout=self.config.request_timeout,
            )
        except HttpError as error:
            raise MapFetchError(resource, error.message, error.status_code) from error

    @staticmethod
    def _parse(resource: str, model, payload):
        try:
            if isinstance(payload, list):
                return [model.model_validate(item) for item in payload]
            return model.model_validate(payload)
        except ValidationError as error:
            raise MapFetchError(resource, f"unexpected response shape: {error}") from error

    async def get_regions(
        self, country_code: str, region_type: Optional[str] = None
    ) -> List[Region]:
        """GET /regions/?country_code=&region_type="""
        params = {"country_code": country_code}
        if region_type:
            params["region_type"] = region_type
        payload = await self._get("hierarchy", "regions/", params=params)
        return self._parse("hierarchy", Region, payload)

    async def get_child_regions(self, region_id: int) -> List[Region]:
        """GET /regions/{id}/children/"""
        payload = await self._get("hierarchy", f"regions/{region_id}/children/")
        return self._parse("hierarchy", Region, payload)

    async def get_region_geojsons(self, region_id: int) -> List[RegionGeoJSON]:
        """GET /regions/{id}/geojsons/"""
        payload = await self._get("geometry", f"regions/{region_id}/geojsons/")
        return self._parse("geometry", RegionGeoJSON, payload)

    async def get_geojson(self, geojson_id: int) -> GeoJSONDetail:
        """GET /geojsons/{id}/"""
        payload = await self._get("geometry", f"geojsons/{geojson_id}/")
        return self._parse("geometry", GeoJSONDetail, payload)

    async def get_chart(self, chart_id: int) -> MapChart:
        """GET /{chart_id}/"""
        payload = await self._get("chart", f"{chart_id}/")
        return self._parse("chart", MapChart, payload)

    async def post_map_data_overlay(self, payload: MapDataOverlayPayload) -> MapDataOverlayResponse:
        """POST /map-data-overlay/"""
        response = await self._post(
            "overlay", "map-data-overlay/", payload.model_dump(mode="json")
        )
        logger.info(f"Map data overlay returned {len((response or {}).get('data', []))} rows")
        return self._parse("overlay", MapDataOverlayResponse, response or {})
