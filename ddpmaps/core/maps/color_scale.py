"""Numeric colour scaling for choropleth maps"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from ddpmaps.schemas.map_schema import MapDataPoint

MAP_COLOR_SCHEMES = {
    "Blues": "#1f77b4",
    "Reds": "#d62728",
    "Greens": "#2ca02c",
    "Purples": "#9467bd",
    "Oranges": "#ff7f0e",
    "Greys": "#7f7f7f",
}

MIN_OPACITY = 0.3
MAX_OPACITY = 1.0
NO_DATA_AREA_COLOR = "#f5f5f5"
EMPTY_RANGE = (0, 100)


@dataclass(frozen=True)
class ColorRange:
    min: float
    max: float


class ColorScaleEngine:
    """Computes display ranges and per-feature styling from overlay values"""

    @staticmethod
    def get_scheme_base_color(color_scheme: Optional[str] = "Blues") -> str:
        return MAP_COLOR_SCHEMES.get(color_scheme or "Blues", MAP_COLOR_SCHEMES["Blues"])

    @staticmethod
    def calculate_value_range(values: Iterable[float]) -> ColorRange:
        """Min/max for colour scaling

        A dataset where every value is the same would give a zero width range,
        so it is widened to start (or end) at 0, and to [-1, 1] when the value
        itself is 0.
        """
        values = list(values)
        if not values:
            return ColorRange(*EMPTY_RANGE)

        min_value = min(values)
        max_value = max(values)

        if min_value == max_value:
            if max_value > 0:
                return ColorRange(0, max_value)
            if max_value < 0:
                return ColorRange(min_value, 0)
            return ColorRange(-1, 1)

        return ColorRange(min_value, max_value)

    @staticmethod
    def normalize(value: float, min_value: float, max_value: float) -> float:
        if max_value <= min_value:
            return 1.0
        normalized = (value - min_value) / (max_value - min_value)
        return min(1.0, max(0.0, normalized))

    @classmethod
    def opacity_for_value(cls, value: float, min_value: float, max_value: float) -> float:
        normalized = cls.normalize(value, min_value, max_value)
        return MIN_OPACITY + normalized * (MAX_OPACITY - MIN_OPACITY)

    @staticmethod
    def with_opacity(base_color: str, opacity: float) -> str:
        """#rrggbb plus an alpha byte"""
        return f"{base_color}{round(opacity * 255):02x}"

    @classmethod
    def create_enhanced_series_data(
        cls,
        points: List[MapDataPoint],
        min_value: float,
        max_value: float,
        base_color: str,
    ) -> List[Dict[str, Any]]:
        """Series data with an area colour per feature, used when the legend is off

        Points without a value are left out of the normalisation and drawn
        with the no-data colour.
        """
        enhanced = []
        for point in points:
            if point.value is None:
                enhanced.append(
                    {
                        "name": point.name,
                        "value": None,
                        "itemStyle": {"areaColor": NO_DATA_AREA_COLOR},
                    }
                )
                continue
            opacity = cls.opacity_for_value(point.value, min_value, max_value)
            enhanced.append(
                {
                    "name": point.name,
                    "value": point.value,
                    "opacity": opacity,
                    "itemStyle": {"areaColor": cls.with_opacity(base_color, opacity)},
                }
            )
        return enhanced

    @staticmethod
    def create_visual_map(
        min_value: float, max_value: float, base_color: str, show_legend: bool
    ) -> Optional[Dict[str, Any]]:
        """Continuous colour legend running from 30% to full opacity of `base_color`"""
        if not show_legend:
            return None

        return {
            "min": min_value,
            "max": max_value,
            "text": ["High", "Low"],
            "realtime": False,
            "calculable": True,
            "inRange": {"color": [f"{base_color}4D", base_color]},
            "orient": "vertical",
            "left": "20px",
            "bottom": "72px",
            "itemWidth": 20,
            "itemHeight": "120px",
            "textStyle": {"fontSize": 12, "color": "#666"},
        }
