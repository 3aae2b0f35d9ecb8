"""Resolves the saved map chart configuration into one canonical shape

Map charts were saved in two historical formats: multi-layer charts keep a
`layers` list in `extra_config`, legacy charts keep a single
`selected_geojson_id` / `geographic_column` pair. On top of either, drill-down
can be configured with a dynamic `geographic_hierarchy`, with the simplified
district/ward/subward columns, or through the layers themselves.
`resolve_map_chart_config` is the only place that knows about these shapes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ddpmaps.schemas.map_schema import ChartFilter, MapChart

EXCLUDING_OPERATORS = ("not equals", "!=")

SIMPLIFIED_LEVEL_NAMES = ("districts", "wards", "sub-wards")


class ConfigSource(str, Enum):
    """Which saved format the chart came from"""

    LAYERS = "layers"
    LEGACY = "legacy"


class DrillDownMode(str, Enum):
    """How the next drill-down level is looked up"""

    DYNAMIC = "dynamic"
    SIMPLIFIED = "simplified"
    LAYERS = "layers"
    NONE = "none"


@dataclass(frozen=True)
class SelectedRegion:
    region_name: str
    region_id: Optional[int] = None
    geojson_id: Optional[int] = None


@dataclass(frozen=True)
class MapLayer:
    geojson_id: Optional[int] = None
    geographic_column: Optional[str] = None
    region_id: Optional[int] = None
    selected_regions: Tuple[SelectedRegion, ...] = ()

    def geojson_for_region(self, region_name: str) -> Optional[int]:
        """geojson to show when drilling into `region_name` through this layer"""
        if self.selected_regions:
            for selected in self.selected_regions:
                if selected.region_name == region_name:
                    return selected.geojson_id
            return None
        return self.geojson_id


@dataclass(frozen=True)
class DrillDownLevel:
    level: int
    label: str
    column: str


@dataclass(frozen=True)
class NextLevel:
    """Where a click on a feature at the current level leads"""

    level: int
    column: str
    label: str
    geojson_id: Optional[int] = None  # None: use the clicked region's default geojson
    configured: bool = True


@dataclass(frozen=True)
class MapChartConfig:
    """Canonical map chart configuration"""

    chart_id: Optional[int]
    title: Optional[str]
    schema_name: Optional[str]
    table_name: Optional[str]
    source: ConfigSource
    geojson_id: Optional[int]
    geographic_column: Optional[str]
    value_column: Optional[str]
    aggregate_function: str = "sum"
    root_region_id: Optional[int] = None
    country_code: Optional[str] = None
    layers: Tuple[MapLayer, ...] = ()
    drill_down_levels: Tuple[DrillDownLevel, ...] = ()
    simplified_columns: Tuple[Optional[str], ...] = (None, None, None)
    chart_filters: Tuple[ChartFilter, ...] = ()
    pagination: Optional[Dict[str, Any]] = None
    sort: Optional[List[Dict[str, Any]]] = None
    customizations: Dict[str, Any] = field(default_factory=dict)

    @property
    def drill_down_mode(self) -> DrillDownMode:
        if self.drill_down_levels:
            return DrillDownMode.DYNAMIC
        if any(self.simplified_columns):
            return DrillDownMode.SIMPLIFIED
        if len(self.layers) > 1:
            return DrillDownMode.LAYERS
        return DrillDownMode.NONE

    @property
    def missing_fields(self) -> List[str]:
        """required fields which are not configured yet"""
        required = {
            "schema_name": self.schema_name,
            "table_name": self.table_name,
            "geographic_column": self.geographic_column,
            "geojson_id": self.geojson_id,
        }
        return [name for name, value in required.items() if not value]

    def next_level(self, current_level: int, region_name: str) -> Optional[NextLevel]:
        """the level a click on `region_name` at `current_level` drills into, if any"""
        mode = self.drill_down_mode

        if mode == DrillDownMode.DYNAMIC:
            for level in self.drill_down_levels:
                if level.level == current_level + 1:
                    return NextLevel(current_level + 1, level.column, level.label)
            return None

        if mode == DrillDownMode.SIMPLIFIED:
            if current_level < len(self.simplified_columns):
                column = self.simplified_columns[current_level]
                if column:
                    return NextLevel(
                        current_level + 1, column, SIMPLIFIED_LEVEL_NAMES[current_level]
                    )
            return None

        if mode == DrillDownMode.LAYERS:
            if current_level + 1 >= len(self.layers):
                return None
            layer = self.layers[current_level + 1]
            geojson_id = layer.geojson_for_region(region_name)
            return NextLevel(
                current_level + 1,
                layer.geographic_column or "",
                f"level {current_level + 1}",
                geojson_id=geojson_id,
                configured=bool(geojson_id),
            )

        return None

    def is_excluded_by_filter(self, region_name: str) -> bool:
        """True when a chart filter removes `region_name` from the data"""
        return any(
            chart_filter.operator in EXCLUDING_OPERATORS and chart_filter.value == region_name
            for chart_filter in self.chart_filters
        )

    def overlay_extra_config(self) -> Dict[str, Any]:
        extra_config: Dict[str, Any] = {"filters": [f.model_dump() for f in self.chart_filters]}
        if self.pagination is not None:
            extra_config["pagination"] = self.pagination
        if self.sort is not None:
            extra_config["sort"] = self.sort
        return extra_config


def _parse_layers(raw_layers) -> Tuple[MapLayer, ...]:
    layers = []
    for raw in raw_layers or []:
        selected = tuple(
            SelectedRegion(
                region_name=item.get("region_name", ""),
                region_id=item.get("region_id"),
                geojson_id=item.get("geojson_id"),
            )
            for item in raw.get("selected_regions") or []
        )
        layers.append(
            MapLayer(
                geojson_id=raw.get("geojson_id") or None,
                geographic_column=raw.get("geographic_column") or None,
                region_id=raw.get("region_id"),
                selected_regions=selected,
            )
        )
    return tuple(layers)


def _parse_filters(raw_filters) -> Tuple[ChartFilter, ...]:
    if isinstance(raw_filters, dict):
        # older charts saved filters as {column: value}
        return tuple(
            ChartFilter(column=column, operator="equals", value=value)
            for column, value in raw_filters.items()
        )
    return tuple(ChartFilter.model_validate(item) for item in raw_filters or [])


def resolve_map_chart_config(chart: MapChart) -> MapChartConfig:
    """adapt either saved format into a MapChartConfig"""
    extra_config = chart.extra_config or {}
    layers = _parse_layers(extra_config.get("layers"))

    if layers:
        source = ConfigSource.LAYERS
        first_layer = layers[0]
        geojson_id = first_layer.geojson_id or extra_config.get("selected_geojson_id")
        geographic_column = first_layer.geographic_column or extra_config.get(
            "geographic_column"
        )
        root_region_id = first_layer.region_id or extra_config.get("region_id")
    else:
        source = ConfigSource.LEGACY
        geojson_id = extra_config.get("selected_geojson_id")
        geographic_column = extra_config.get("geographic_column")
        root_region_id = extra_config.get("region_id")

    hierarchy = extra_config.get("geographic_hierarchy") or {}
    drill_down_levels = tuple(
        sorted(
            (
                DrillDownLevel(
                    level=int(level["level"]),
                    label=level.get("label") or level["column"],
                    column=level["column"],
                )
                for level in hierarchy.get("drill_down_levels") or []
                if level.get("column")
            ),
            key=lambda level: level.level,
        )
    )

    return MapChartConfig(
        chart_id=chart.id,
        title=chart.title,
        schema_name=chart.schema_name,
        table_name=chart.table_name,
        source=source,
        geojson_id=geojson_id or None,
        geographic_column=geographic_column or None,
        value_column=extra_config.get("aggregate_column") or extra_config.get("value_column"),
        aggregate_function=extra_config.get("aggregate_function") or "sum",
        root_region_id=root_region_id,
        country_code=extra_config.get("country_code"),
        layers=layers,
        drill_down_levels=drill_down_levels,
        simplified_columns=(
            extra_config.get("district_column"),
            extra_config.get("ward_column"),
            extra_config.get("subward_column"),
        ),
        chart_filters=_parse_filters(extra_config.get("filters")),
        pagination=extra_config.get("pagination"),
        sort=extra_config.get("sort"),
        customizations=dict(extra_config.get("customizations") or {}),
    )
