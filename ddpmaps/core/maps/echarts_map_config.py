from typing import Any, Dict, List, Optional

from ddpmaps.core.maps.color_scale import ColorScaleEngine
from ddpmaps.schemas.map_schema import MapDataPoint

MIN_ZOOM = 0.5
MAX_ZOOM = 10
ZOOM_FACTOR = 1.5
DEFAULT_ZOOM = 0.8


class MapEChartsConfigGenerator:
    """Generate ECharts configuration for choropleth map charts"""

    @staticmethod
    def zoom_in(zoom: float) -> float:
        return min(zoom * ZOOM_FACTOR, MAX_ZOOM)

    @staticmethod
    def zoom_out(zoom: float) -> float:
        return max(zoom / ZOOM_FACTOR, MIN_ZOOM)

    @staticmethod
    def create_map_tooltip(value_column: Optional[str], customizations: Dict[str, Any]) -> Dict:
        null_label = customizations.get("nullValueLabel")
        return {
            "trigger": "item",
            "show": customizations.get("showTooltip", True) is not False,
            "formatter": f"{{b}}<br/>{value_column or 'Value'}: {{c}}",
            "nullValueLabel": null_label if null_label is not None else "No Data",
        }

    @staticmethod
    def create_map_series(
        map_name: str,
        series_data: List[Dict[str, Any]],
        enhanced_series_data: List[Dict[str, Any]],
        customizations: Dict[str, Any],
        zoom: float,
        show_legend: bool,
    ) -> Dict[str, Any]:
        emphasis = customizations.get("emphasis", True) is not False
        animation = customizations.get("animation", True) is not False
        series = {
            "name": "Map Data",
            "type": "map",
            "map": map_name,
            "roam": "move",
            "layoutCenter": ["50%", "50%"],
            "layoutSize": "75%",
            "zoom": zoom,
            "selectedMode": "single",
            "itemStyle": {
                "areaColor": "#f5f5f5",
                "borderColor": customizations.get("borderColor") or "#333",
                "borderWidth": customizations.get("borderWidth") or 0.5,
            },
            "label": {
                "show": customizations.get("showLabels") is True,
                "fontSize": 12,
                "color": "#333",
            },
            "emphasis": {
                "label": {"show": emphasis, "fontSize": 14},
                "itemStyle": {"areaColor": "#37a2da"} if emphasis else {},
            },
            "animation": animation,
            "animationDuration": 1000 if animation else 0,
            # individual colours only when there is no legend to read them from
            "data": series_data if show_legend else enhanced_series_data,
        }
        return series

    @classmethod
    def transform_map_config(
        cls,
        map_name: str,
        map_data: Optional[List[MapDataPoint]],
        title: Optional[str] = None,
        value_column: Optional[str] = None,
        customizations: Optional[Dict[str, Any]] = None,
        zoom: float = DEFAULT_ZOOM,
    ) -> Dict[str, Any]:
        """Build the full option for a map registered as `map_name`"""
        customizations = customizations or {}
        points = list(map_data or [])
        series_data = [{"name": point.name, "value": point.value} for point in points]

        values = [point.value for point in points if point.value is not None]
        value_range = ColorScaleEngine.calculate_value_range(values)
        base_color = ColorScaleEngine.get_scheme_base_color(customizations.get("colorScheme"))

        show_legend = customizations.get("showLegend", True) is not False and len(values) > 0
        enhanced_series_data = ColorScaleEngine.create_enhanced_series_data(
            points, value_range.min, value_range.max, base_color
        )

        config: Dict[str, Any] = {
            "tooltip": cls.create_map_tooltip(value_column, customizations),
            "series": [
                cls.create_map_series(
                    map_name,
                    series_data,
                    enhanced_series_data,
                    customizations,
                    zoom,
                    show_legend,
                )
            ],
        }

        display_title = customizations.get("title") or title
        if display_title:
            config["title"] = {"text": display_title, "left": "center", "show": True}

        visual_map = ColorScaleEngine.create_visual_map(
            value_range.min, value_range.max, base_color, show_legend
        )
        if visual_map:
            config["visualMap"] = visual_map

        return config
