"""In-process map rendering engine

`MapRegistry` is the process-wide namespace table: boundary geometry has to be
registered under a name before a map series can reference it. `ChartInstance`
draws ECharts-shaped option dicts into an `OffscreenContainer`, a matplotlib
figure living in pyplot's figure table.
"""

import copy
import itertools
import threading
import time
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from ddpmaps.core.maps.errors import RenderEngineError
from ddpmaps.utils.custom_logger import CustomLogger

logger = CustomLogger("ddpmaps.render")

NO_DATA_COLOR = "#f5f5f5"
DEFAULT_BORDER_COLOR = "#333"
DEFAULT_BORDER_WIDTH = 0.5


@lru_cache(maxsize=1)
def _require_matplotlib() -> Any:
    import matplotlib

    matplotlib.use("Agg", force=False)
    import matplotlib.pyplot as plt

    return plt


class MapRegistry:
    """Named boundary geometries shared by every chart instance in the process"""

    def __init__(self):
        self._maps: Dict[str, dict] = {}
        self._lock = threading.Lock()
        self._counter = itertools.count(1)

    def unique_name(self, prefix: str) -> str:
        """a name which has never been handed out by this registry"""
        return f"{prefix}-{int(time.time() * 1000)}-{next(self._counter)}"

    def register_map(self, name: str, geojson: dict) -> None:
        with self._lock:
            if name in self._maps:
                raise RenderEngineError(f"map '{name}' is already registered")
            self._maps[name] = geojson
        logger.debug(f"registered map {name}")

    def unregister_map(self, name: str) -> bool:
        """returns False when `name` was not registered"""
        with self._lock:
            removed = self._maps.pop(name, None) is not None
        if removed:
            logger.debug(f"unregistered map {name}")
        return removed

    def get_map(self, name: str) -> dict:
        with self._lock:
            if name not in self._maps:
                raise RenderEngineError(f"map '{name}' is not registered")
            return self._maps[name]

    def is_registered(self, name: str) -> bool:
        with self._lock:
            return name in self._maps

    def names(self) -> List[str]:
        with self._lock:
            return list(self._maps)


map_registry = MapRegistry()


class OffscreenContainer:
    """A figure sized for export which is not attached to any window"""

    def __init__(self, width_px: int, height_px: int, dpi: int = 100):
        plt = _require_matplotlib()
        self.width_px = width_px
        self.height_px = height_px
        self.dpi = dpi
        self.figure = plt.figure(figsize=(width_px / dpi, height_px / dpi), dpi=dpi)

    @property
    def attached(self) -> bool:
        plt = _require_matplotlib()
        return plt.fignum_exists(self.figure.number)

    def remove(self) -> None:
        """take the figure out of pyplot's figure table"""
        plt = _require_matplotlib()
        plt.close(self.figure)


def _exterior_rings(geometry: Optional[dict]) -> Iterator[Sequence]:
    if not geometry:
        return
    geometry_type = geometry.get("type")
    coordinates = geometry.get("coordinates") or []
    if geometry_type == "Polygon":
        if coordinates:
            yield coordinates[0]
    elif geometry_type == "MultiPolygon":
        for polygon in coordinates:
            if polygon:
                yield polygon[0]
    elif geometry_type == "GeometryCollection":
        for child in geometry.get("geometries") or []:
            yield from _exterior_rings(child)


class ChartInstance:
    """Draws map options into a container until it is disposed"""

    def __init__(self, container: OffscreenContainer, registry: MapRegistry = None):
        self._container = container
        self._registry = registry or map_registry
        self._option: Dict[str, Any] = {}
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def get_dom(self) -> OffscreenContainer:
        return self._container

    def get_option(self) -> Dict[str, Any]:
        return copy.deepcopy(self._option)

    def set_option(self, option: Dict[str, Any]) -> None:
        """replace the current option and redraw"""
        if self._disposed:
            raise RenderEngineError("chart instance has been disposed")
        self._option = copy.deepcopy(option)
        self._draw()

    def save(self, fp, format: str = "png") -> None:
        if self._disposed:
            raise RenderEngineError("chart instance has been disposed")
        self._container.figure.savefig(fp, format=format, dpi=self._container.dpi)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._container.figure.clf()
        self._option = {}
        self._disposed = True

    def _draw(self) -> None:
        from matplotlib import cm, colors

        figure = self._container.figure
        figure.clf()
        ax = figure.add_axes([0.0, 0.0, 1.0, 0.92])
        ax.set_axis_off()
        ax.set_aspect("equal", adjustable="datalim")

        title = self._option.get("title") or {}
        if title.get("text") and title.get("show", True):
            text_style = title.get("textStyle") or {}
            figure.suptitle(
                title["text"],
                fontsize=text_style.get("fontSize", 16),
                fontweight=text_style.get("fontWeight", "normal"),
            )

        visual_map = self._option.get("visualMap")
        cmap = norm = None
        if visual_map:
            in_range = (visual_map.get("inRange") or {}).get("color") or visual_map.get("color")
            cmap = colors.LinearSegmentedColormap.from_list(
                "visualmap", _to_rgba_list(in_range or ["#aec7e8", "#1f77b4"])
            )
            norm = colors.Normalize(vmin=visual_map["min"], vmax=visual_map["max"])

        for series in self._option.get("series") or []:
            if series.get("type") != "map":
                continue
            map_name = series.get("map") or series.get("mapType")
            geojson = self._registry.get_map(map_name)
            self._draw_series(ax, series, geojson, cmap, norm)

        ax.autoscale_view()
        if cmap is not None:
            figure.colorbar(cm.ScalarMappable(norm=norm, cmap=cmap), ax=ax, shrink=0.35)

    @staticmethod
    def _draw_series(ax, series: dict, geojson: dict, cmap, norm) -> None:
        item_style = series.get("itemStyle") or {}
        default_color = item_style.get("areaColor", NO_DATA_COLOR)
        edge_color = item_style.get("borderColor", DEFAULT_BORDER_COLOR)
        line_width = item_style.get("borderWidth", DEFAULT_BORDER_WIDTH)
        data_by_name = {item["name"]: item for item in series.get("data") or []}

        for feature in geojson.get("features") or []:
            name = (feature.get("properties") or {}).get("name")
            face_color = _area_color(data_by_name.get(name), default_color, cmap, norm)
            for ring in _exterior_rings(feature.get("geometry")):
                xs = [point[0] for point in ring]
                ys = [point[1] for point in ring]
                ax.fill(xs, ys, facecolor=face_color, edgecolor=edge_color, linewidth=line_width)


def _area_color(item: Optional[dict], default_color: str, cmap, norm):
    if item is None:
        return default_color
    area_color = (item.get("itemStyle") or {}).get("areaColor")
    if area_color:
        return area_color
    if item.get("value") is not None and cmap is not None:
        return cmap(norm(item["value"]))
    return default_color


def _to_rgba_list(color_list: Sequence[str]) -> List[Tuple[float, float, float, float]]:
    from matplotlib import colors

    return [colors.to_rgba(color) for color in color_list]


def init(container: OffscreenContainer, registry: MapRegistry = None) -> ChartInstance:
    """create a chart instance drawing into `container`"""
    return ChartInstance(container, registry)
