"""Tests for boundary geometry loading and namespace ownership"""

import asyncio

import pytest

from ddpmaps.core.maps.geojson_lifecycle import (
    GeoJSONLifecycleManager,
    pick_default_geojson,
    standardize_geojson_properties,
)
from ddpmaps.schemas.map_schema import RegionGeoJSON


class TestLoad:
    """Test fetching and caching geometry"""

    @pytest.mark.asyncio
    async def test_missing_id_is_a_no_op(self, maps_client, registry):
        """Test a chart without a geojson yet loads nothing"""
        manager = GeoJSONLifecycleManager(maps_client, registry)
        assert await manager.load(None) is None
        assert await manager.load(0) is None
        maps_client.get_geojson.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_load_is_cached_and_standardized(
        self, maps_client, registry, geojson_detail_factory
    ):
        """Test geometry is fetched once and names come from the properties key"""
        maps_client.get_geojson.return_value = geojson_detail_factory(
            4, ["Goa", "Kerala"], properties_key="NAME_1"
        )
        manager = GeoJSONLifecycleManager(maps_client, registry)

        first = await manager.load(4)
        second = await manager.load(4)

        assert first is second
        assert first.feature_names == ["Goa", "Kerala"]
        maps_client.get_geojson.assert_awaited_once_with(4)

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_one_request(
        self, maps_client, registry, geojson_detail_factory
    ):
        """Test concurrent loads of one id share a request"""

        async def slow_geojson(geojson_id):
            await asyncio.sleep(0.01)
            return geojson_detail_factory(geojson_id, ["Goa"])

        maps_client.get_geojson.side_effect = slow_geojson
        manager = GeoJSONLifecycleManager(maps_client, registry)
        first, second = await asyncio.gather(manager.load(8), manager.load(8))
        assert first is second
        assert maps_client.get_geojson.await_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_load_does_not_break_shared_request(
        self, maps_client, registry, geojson_detail_factory
    ):
        """Test cancelling one waiter leaves the shared load running for the other"""
        release = asyncio.Event()

        async def slow_geojson(geojson_id):
            await release.wait()
            return geojson_detail_factory(geojson_id, ["Goa"])

        maps_client.get_geojson.side_effect = slow_geojson
        manager = GeoJSONLifecycleManager(maps_client, registry)
        first = asyncio.ensure_future(manager.load(8))
        second = asyncio.ensure_future(manager.load(8))
        await asyncio.sleep(0.01)

        first.cancel()
        release.set()

        assert (await second).feature_names == ["Goa"]
        assert first.cancelled()
        assert maps_client.get_geojson.await_count == 1

    @pytest.mark.asyncio
    async def test_list_geojsons_defaults_first(self, maps_client, registry):
        """Test the default boundary file is listed first"""
        maps_client.get_region_geojsons.return_value = [
            RegionGeoJSON(id=1, region_id=3, name="b"),
            RegionGeoJSON(id=2, region_id=3, name="a", is_default=True),
        ]
        manager = GeoJSONLifecycleManager(maps_client, registry)
        geojsons = await manager.list_geojsons(3)
        assert [g.id for g in geojsons] == [2, 1]
        assert pick_default_geojson(geojsons).id == 2
        assert pick_default_geojson([]) is None


class TestRenderNamespaces:
    """Test registration and disposal"""

    @pytest.mark.asyncio
    async def test_register_and_dispose(self, maps_client, registry, geojson_detail_factory):
        """Test a handle exists only while registered and disposal releases it"""
        maps_client.get_geojson.return_value = geojson_detail_factory(4, ["Goa"])
        manager = GeoJSONLifecycleManager(maps_client, registry)
        payload = await manager.load(4)

        handle = manager.register_for_render(payload)
        assert registry.is_registered(handle.name)
        assert manager.active_handles == [handle]

        manager.dispose_render_namespace(handle)
        assert not registry.is_registered(handle.name)
        assert manager.active_handles == []
        manager.dispose_render_namespace(None)

    @pytest.mark.asyncio
    async def test_names_are_never_reused(self, maps_client, registry, geojson_detail_factory):
        """Test every registration of the same geometry gets a new name"""
        maps_client.get_geojson.return_value = geojson_detail_factory(4, ["Goa"])
        manager = GeoJSONLifecycleManager(maps_client, registry)
        payload = await manager.load(4)

        first = manager.register_for_render(payload)
        manager.dispose_render_namespace(first)
        second = manager.register_for_render(payload)
        exported = manager.register_for_render(payload, prefix="export-map")

        assert len({first.name, second.name, exported.name}) == 3
        assert exported.name.startswith("export-map-")
        manager.dispose_all()
        assert registry.names() == []


def test_standardize_geojson_properties(geojson_factory):
    """the configured property is copied to name"""
    geojson = geojson_factory(["Goa"], properties_key="st_nm")
    standardize_geojson_properties(geojson, "st_nm")
    assert geojson["features"][0]["properties"]["name"] == "Goa"
