"""Region hierarchy lookups for map drill-down"""

import asyncio
from typing import Dict, List, Optional, Tuple

from ddpmaps.core.maps.api_client import MapsApiClient
from ddpmaps.core.maps.config import get_maps_config
from ddpmaps.schemas.map_schema import Region
from ddpmaps.utils.custom_logger import CustomLogger

logger = CustomLogger("ddpmaps.regions")


def normalize_region_name(name):
    """Normalize region name for consistent matching"""
    if not name:
        return ""
    return str(name).strip().lower()


def _display_order(region: Region) -> Tuple[str, int]:
    return (normalize_region_name(region.display_name or region.name), region.id)


def find_region(regions: List[Region], feature_name: str) -> Optional[Region]:
    """the region whose name or display name matches a boundary feature name"""
    for region in regions:
        if feature_name in (region.name, region.display_name):
            return region
    wanted = normalize_region_name(feature_name)
    if not wanted:
        return None
    for region in regions:
        names = (normalize_region_name(region.name), normalize_region_name(region.display_name))
        if wanted in names:
            return region
    return None


def build_region_type_chain(regions: List[Region]) -> List[str]:
    """linear chain of region types from the root down, e.g. country -> state -> district"""
    by_id = {region.id: region for region in regions}
    children_of: Dict[str, List[str]] = {}
    parent_of: Dict[str, str] = {}

    for region in regions:
        if not region.type or region.parent_id is None:
            continue
        parent = by_id.get(region.parent_id)
        if parent is None or not parent.type:
            continue
        children_of.setdefault(parent.type, [])
        if region.type not in children_of[parent.type]:
            children_of[parent.type].append(region.type)
        parent_of[region.type] = parent.type

    all_types = []
    for region in regions:
        if region.type and region.type not in all_types:
            all_types.append(region.type)
    root_types = [region_type for region_type in all_types if region_type not in parent_of]
    if not root_types:
        return []

    chain = [root_types[0]]
    while children_of.get(chain[-1]):
        next_type = children_of[chain[-1]][0]
        if next_type in chain:
            break
        chain.append(next_type)
    return chain


class RegionHierarchyResolver:
    """Resolves and caches the children of geographic regions

    Regions are immutable once fetched, so both the regions and the child
    lists are cached for the lifetime of the resolver. An empty child list
    marks a leaf.
    """

    def __init__(
        self,
        client: MapsApiClient,
        country_code: Optional[str] = None,
        root_region_type: Optional[str] = None,
    ):
        config = get_maps_config()
        self.client = client
        self.country_code = country_code or config.default_country_code
        self.root_region_type = root_region_type or config.root_region_type
        self._regions_by_id: Dict[int, Region] = {}
        self._children: Dict[Optional[int], List[Region]] = {}
        self._regions_by_type: Dict[Tuple[str, Optional[str]], List[Region]] = {}
        self._pending: Dict[Optional[int], asyncio.Task] = {}

    def _remember(self, regions: List[Region]) -> List[Region]:
        ordered = sorted(regions, key=_display_order)
        for region in ordered:
            self._regions_by_id[region.id] = region
        return ordered

    def get_region(self, region_id: int) -> Optional[Region]:
        return self._regions_by_id.get(region_id)

    def has_children(self, region_id: int) -> Optional[bool]:
        """None until the children of `region_id` have been fetched"""
        if region_id not in self._children:
            return None
        return len(self._children[region_id]) > 0

    async def get_regions(
        self, country_code: str, region_type: Optional[str] = None
    ) -> List[Region]:
        key = (country_code, region_type)
        if key not in self._regions_by_type:
            regions = await self.client.get_regions(country_code, region_type)
            self._regions_by_type[key] = self._remember(regions)
            logger.info(
                f"Fetched {len(regions)} regions for {country_code} (type={region_type or 'any'})"
            )
        return list(self._regions_by_type[key])

    async def get_children(self, parent_region_id: Optional[int]) -> List[Region]:
        """ordered children of a region; None asks for the regions at the root level"""
        if parent_region_id in self._children:
            return list(self._children[parent_region_id])

        if parent_region_id is None:
            children = await self.get_regions(self.country_code, self.root_region_type)
            self._children[None] = children
            return list(children)

        # concurrent callers share one request per parent
        task = self._pending.get(parent_region_id)
        if task is None:
            task = asyncio.ensure_future(self.client.get_child_regions(parent_region_id))
            self._pending[parent_region_id] = task
        try:
            regions = await asyncio.shield(task)
        finally:
            if self._pending.get(parent_region_id) is task and task.done():
                self._pending.pop(parent_region_id, None)

        if parent_region_id not in self._children:
            self._children[parent_region_id] = self._remember(regions)
            logger.info(f"Region {parent_region_id} has {len(regions)} children")
        return list(self._children[parent_region_id])
