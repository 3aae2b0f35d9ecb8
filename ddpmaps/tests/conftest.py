from unittest.mock import AsyncMock, Mock

import pytest
import requests

from ddpmaps.core.maps.api_client import MapsApiClient
from ddpmaps.core.maps.config import MapsConfig
from ddpmaps.core.maps.render_engine import MapRegistry
from ddpmaps.schemas.map_schema import GeoJSONDetail, MapChart


def make_geojson(names, properties_key="name"):
    """a FeatureCollection with one unit square per name, laid out left to right"""
    features = []
    for index, name in enumerate(names):
        x = float(index)
        features.append(
            {
                "type": "Feature",
                "properties": {properties_key: name},
                "geometry": {
                    "type": "Polygon",
                    "coordinates": [[[x, 0.0], [x + 1, 0.0], [x + 1, 1.0], [x, 1.0], [x, 0.0]]],
                },
            }
        )
    return {"type": "FeatureCollection", "features": features}


@pytest.fixture
def geojson_factory():
    return make_geojson


@pytest.fixture
def registry():
    return MapRegistry()


@pytest.fixture
def maps_client():
    """an api client whose endpoints are all AsyncMocks"""
    return AsyncMock(spec=MapsApiClient)


@pytest.fixture
def api_client():
    """a real api client, for tests that patch requests underneath it"""
    return MapsApiClient(MapsConfig(api_base_url="http://api/charts"))


@pytest.fixture
def html_response():
    """a 200 response whose body is a proxy error page"""
    response = Mock()
    response.status_code = 200
    response.url = "http://api/charts/"
    response.text = "<html>Bad gateway</html>"
    response.raise_for_status.return_value = None
    response.json.side_effect = requests.JSONDecodeError("Expecting value", response.text, 0)
    return response


@pytest.fixture
def geojson_detail_factory():
    def factory(geojson_id, names, properties_key="name"):
        return GeoJSONDetail(
            id=geojson_id,
            name=f"geojson {geojson_id}",
            geojson_data=make_geojson(names, properties_key),
            properties_key=properties_key,
        )

    return factory


@pytest.fixture
def map_chart_factory():
    def factory(
        extra_config=None,
        chart_id=7,
        chart_type="map",
        title="Population by state",
        schema_name="analytics",
        table_name="population",
    ):
        return MapChart(
            id=chart_id,
            title=title,
            chart_type=chart_type,
            schema_name=schema_name,
            table_name=table_name,
            extra_config=extra_config if extra_config is not None else {},
        )

    return factory
