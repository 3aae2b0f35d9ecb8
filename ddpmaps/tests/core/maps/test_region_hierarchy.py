"""Tests for region hierarchy lookups"""

import asyncio

import pytest

from ddpmaps.core.maps.errors import MapFetchError
from ddpmaps.core.maps.region_hierarchy import (
    RegionHierarchyResolver,
    build_region_type_chain,
    find_region,
    normalize_region_name,
)
from ddpmaps.schemas.map_schema import Region


def region(region_id, name, region_type="district", parent_id=None, display_name=None):
    return Region(
        id=region_id,
        name=name,
        display_name=display_name,
        type=region_type,
        parent_id=parent_id,
    )


class TestFindRegion:
    """Test matching a feature name to a region"""

    def test_exact_name_or_display_name(self):
        """Test exact matches on name and display name"""
        regions = [region(1, "north_goa", display_name="North Goa"), region(2, "South Goa")]
        assert find_region(regions, "North Goa").id == 1
        assert find_region(regions, "South Goa").id == 2

    def test_normalized_match(self):
        """Test case and surrounding whitespace are ignored"""
        regions = [region(1, "Kerala")]
        assert find_region(regions, "  KERALA ").id == 1

    def test_no_match(self):
        """Test unknown and empty names resolve to None"""
        regions = [region(1, "Kerala")]
        assert find_region(regions, "Atlantis") is None
        assert find_region(regions, "") is None

    def test_normalize_region_name(self):
        assert normalize_region_name(None) == ""
        assert normalize_region_name(" Tamil Nadu ") == "tamil nadu"


class TestBuildRegionTypeChain:
    """Test the region type chain derived from parent links"""

    def test_chain(self):
        """Test country -> state -> district"""
        regions = [
            region(3, "North Goa", "district", parent_id=2),
            region(1, "India", "country"),
            region(2, "Goa", "state", parent_id=1),
        ]
        assert build_region_type_chain(regions) == ["country", "state", "district"]

    def test_empty(self):
        assert build_region_type_chain([]) == []


class TestRegionHierarchyResolver:
    """Test child lookups and caching"""

    @pytest.mark.asyncio
    async def test_children_are_ordered_and_cached(self, maps_client):
        """Test children come back in display order and are fetched once"""
        maps_client.get_child_regions.return_value = [
            region(12, "Zuari", parent_id=1),
            region(11, "bardez", parent_id=1),
        ]
        resolver = RegionHierarchyResolver(maps_client, country_code="IND")

        first = await resolver.get_children(1)
        second = await resolver.get_children(1)

        assert [r.name for r in first] == ["bardez", "Zuari"]
        assert first == second
        maps_client.get_child_regions.assert_awaited_once_with(1)
        assert resolver.get_region(12).name == "Zuari"
        assert resolver.has_children(1) is True

    @pytest.mark.asyncio
    async def test_leaf(self, maps_client):
        """Test an empty child list marks a leaf"""
        maps_client.get_child_regions.return_value = []
        resolver = RegionHierarchyResolver(maps_client)
        assert resolver.has_children(5) is None
        assert await resolver.get_children(5) == []
        assert resolver.has_children(5) is False

    @pytest.mark.asyncio
    async def test_root_level(self, maps_client):
        """Test None asks for the configured root region type"""
        maps_client.get_regions.return_value = [region(1, "Goa", "state")]
        resolver = RegionHierarchyResolver(maps_client, country_code="IND", root_region_type="state")
        assert [r.name for r in await resolver.get_children(None)] == ["Goa"]
        maps_client.get_regions.assert_awaited_once_with("IND", "state")

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_request(self, maps_client):
        """Test concurrent lookups for one parent share a request"""

        async def slow_children(region_id):
            await asyncio.sleep(0.01)
            return [region(21, "Bardez", parent_id=region_id)]

        maps_client.get_child_regions.side_effect = slow_children
        resolver = RegionHierarchyResolver(maps_client)
        first, second = await asyncio.gather(resolver.get_children(2), resolver.get_children(2))
        assert first == second
        assert maps_client.get_child_regions.await_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_lookup_does_not_break_shared_request(self, maps_client):
        """Test cancelling one waiter leaves the shared lookup running for the other"""
        release = asyncio.Event()

        async def slow_children(region_id):
            await release.wait()
            return [region(21, "Bardez", parent_id=region_id)]

        maps_client.get_child_regions.side_effect = slow_children
        resolver = RegionHierarchyResolver(maps_client)
        first = asyncio.ensure_future(resolver.get_children(2))
        second = asyncio.ensure_future(resolver.get_children(2))
        await asyncio.sleep(0.01)

        first.cancel()
        release.set()

        assert [r.name for r in await second] == ["Bardez"]
        assert first.cancelled()
        assert maps_client.get_child_regions.await_count == 1

    @pytest.mark.asyncio
    async def test_fetch_error_is_not_cached(self, maps_client):
        """Test a failed lookup can be retried"""
        maps_client.get_child_regions.side_effect = [
            MapFetchError("hierarchy", "timeout"),
            [region(31, "Ponda", parent_id=3)],
        ]
        resolver = RegionHierarchyResolver(maps_client)
        with pytest.raises(MapFetchError):
            await resolver.get_children(3)
        assert resolver.has_children(3) is None
        assert [r.name for r in await resolver.get_children(3)] == ["Ponda"]
