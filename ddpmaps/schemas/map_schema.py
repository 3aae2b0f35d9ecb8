"""Schemas for the responses and payloads exchanged with the charts API"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Region(BaseModel):
    """A geographic region (country, state, district, ...)"""

    id: int
    name: str
    display_name: Optional[str] = None
    type: Optional[str] = None
    parent_id: Optional[int] = None  # lookup only, the parent is not owned
    country_code: Optional[str] = None
    region_code: Optional[str] = None


class RegionGeoJSON(BaseModel):
    """Metadata of a boundary file available for a region; the geometry is fetched separately"""

    id: int
    region_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    is_default: bool = False
    properties_key: Optional[str] = None
    file_size: Optional[int] = None


class GeoJSONDetail(BaseModel):
    """Response of GET /geojsons/{id}/"""

    id: Optional[int] = None
    name: Optional[str] = None
    geojson_data: Dict[str, Any]
    properties_key: str = "name"


class MapDataPoint(BaseModel):
    """One value per boundary feature; None means no data, which is not 0"""

    name: str
    value: Optional[float] = None


class ChartMetric(BaseModel):
    """Schema for individual chart metric"""

    column: Optional[str] = None  # Column name, null for COUNT(*) operations
    aggregation: str  # SUM, COUNT, AVG, MAX, MIN, etc.
    alias: Optional[str] = None


class ChartFilter(BaseModel):
    """Chart level filter predicate"""

    column: str
    operator: str = "equals"
    value: Any = None


class MapDataOverlayPayload(BaseModel):
    """Body of POST /map-data-overlay/"""

    schema_name: str
    table_name: str
    geographic_column: str
    value_column: str
    metrics: List[ChartMetric]
    filters: Dict[str, Any] = Field(default_factory=dict)  # drill-down selections
    chart_filters: List[ChartFilter] = Field(default_factory=list)
    dashboard_filters: Dict[str, Any] = Field(default_factory=dict)
    extra_config: Dict[str, Any] = Field(default_factory=dict)


class MapDataOverlayResponse(BaseModel):
    """Response of POST /map-data-overlay/"""

    success: bool = True
    data: List[MapDataPoint] = Field(default_factory=list)
    count: Optional[int] = None


class MapChart(BaseModel):
    """The subset of a saved chart the maps engine reads"""

    id: int
    title: Optional[str] = None
    chart_type: str
    schema_name: Optional[str] = None
    table_name: Optional[str] = None
    extra_config: Dict[str, Any] = Field(default_factory=dict)
