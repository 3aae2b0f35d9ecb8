"""Boundary geometry fetching and render namespace ownership

Boundary files are large and immutable, so each one is fetched once per
session and cached by geojson id. Rendering a map needs the geometry
registered in the shared `MapRegistry`; every registration made here goes
through `register_for_render` and has to be released with
`dispose_render_namespace` on every path out of a render, errors included.
"""

import asyncio
import copy
from dataclasses import dataclass
from typing import Dict, List, Optional

from ddpmaps.core.maps.api_client import MapsApiClient
from ddpmaps.core.maps.render_engine import MapRegistry, map_registry
from ddpmaps.schemas.map_schema import RegionGeoJSON
from ddpmaps.utils.custom_logger import CustomLogger

logger = CustomLogger("ddpmaps.geojson")


@dataclass(frozen=True)
class GeoJSONPayload:
    geojson_id: int
    geojson_data: dict
    properties_key: str

    @property
    def feature_names(self) -> List[str]:
        return [
            (feature.get("properties") or {}).get("name")
            for feature in self.geojson_data.get("features", [])
        ]


@dataclass(frozen=True)
class RenderNamespaceHandle:
    name: str
    geojson_id: int


def standardize_geojson_properties(geojson_data: dict, properties_key: str) -> dict:
    """Standardize GeoJSON properties to use 'name' key"""

    for feature in geojson_data.get("features", []):
        if "properties" in feature:
            # Copy the specified property to 'name' (keep original case for rendering)
            if properties_key in feature["properties"]:
                feature["properties"]["name"] = feature["properties"][properties_key]

    return geojson_data


def pick_default_geojson(geojsons: List[RegionGeoJSON]) -> Optional[RegionGeoJSON]:
    """the system default boundary file, else the first available one"""
    for geojson in geojsons:
        if geojson.is_default:
            return geojson
    return geojsons[0] if geojsons else None


class GeoJSONLifecycleManager:
    """Loads boundary geometry and owns its render namespaces"""

    def __init__(
        self,
        client: MapsApiClient,
        registry: MapRegistry = None,
        namespace_prefix: str = "customMap",
    ):
        self.client = client
        self.registry = registry or map_registry
        self.namespace_prefix = namespace_prefix
        self._cache: Dict[int, GeoJSONPayload] = {}
        self._pending: Dict[int, asyncio.Task] = {}
        self._region_geojsons: Dict[int, List[RegionGeoJSON]] = {}
        self._active: Dict[str, RenderNamespaceHandle] = {}

    @property
    def active_handles(self) -> List[RenderNamespaceHandle]:
        return list(self._active.values())

    async def list_geojsons(self, region_id: int) -> List[RegionGeoJSON]:
        """boundary files available for a region, defaults first"""
        if region_id not in self._region_geojsons:
            geojsons = await self.client.get_region_geojsons(region_id)
            self._region_geojsons[region_id] = sorted(
                geojsons, key=lambda g: (not g.is_default, g.name or "")
            )
        return list(self._region_geojsons[region_id])

    async def load(self, geojson_id: Optional[int]) -> Optional[GeoJSONPayload]:
        """geometry for `geojson_id`; a chart without one yet gets None"""
        if not geojson_id:
            return None
        if geojson_id in self._cache:
            return self._cache[geojson_id]

        task = self._pending.get(geojson_id)
        if task is None:
            task = asyncio.ensure_future(self.client.get_geojson(geojson_id))
            self._pending[geojson_id] = task
        try:
            detail = await asyncio.shield(task)
        finally:
            if self._pending.get(geojson_id) is task and task.done():
                self._pending.pop(geojson_id, None)

        if geojson_id not in self._cache:
            geojson_data = standardize_geojson_properties(
                copy.deepcopy(detail.geojson_data), detail.properties_key
            )
            self._cache[geojson_id] = GeoJSONPayload(
                geojson_id=geojson_id,
                geojson_data=geojson_data,
                properties_key=detail.properties_key,
            )
            logger.info(
                f"Loaded geojson {geojson_id} with "
                f"{len(geojson_data.get('features', []))} features"
            )
        return self._cache[geojson_id]

    def register_for_render(
        self, payload: GeoJSONPayload, prefix: Optional[str] = None
    ) -> RenderNamespaceHandle:
        """register the geometry under a fresh name; the handle exists only once registered"""
        name = self.registry.unique_name(prefix or self.namespace_prefix)
        self.registry.register_map(name, payload.geojson_data)
        handle = RenderNamespaceHandle(name=name, geojson_id=payload.geojson_id)
        self._active[name] = handle
        return handle

    def dispose_render_namespace(self, handle: Optional[RenderNamespaceHandle]) -> None:
        if handle is None:
            return
        self.registry.unregister_map(handle.name)
        self._active.pop(handle.name, None)

    def dispose_all(self) -> None:
        for handle in self.active_handles:
            self.dispose_render_namespace(handle)

