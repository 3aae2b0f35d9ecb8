"""Drill-down state machine for map charts

The navigation state is either `Root` or `Drilled(path)`. `drill_into`,
`drill_up` and `drill_home` are pure and return a new state; only
`DrillDownController` holds the current one, and it only commits a new state
once the boundary geometry for that level has been fetched and registered.

Every handler bumps a generation counter before it awaits anything. A
transition that finishes after a newer one started is dropped, so the last
click wins.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ddpmaps.core.maps.echarts_map_config import DEFAULT_ZOOM, MapEChartsConfigGenerator
from ddpmaps.core.maps.errors import (
    MapConfigurationError,
    MapErrorKind,
    MapFetchError,
    MapsError,
    RegionResolutionError,
)
from ddpmaps.core.maps.geojson_lifecycle import (
    GeoJSONLifecycleManager,
    GeoJSONPayload,
    RenderNamespaceHandle,
    pick_default_geojson,
)
from ddpmaps.core.maps.map_chart_config import DrillDownMode, MapChartConfig, NextLevel
from ddpmaps.core.maps.overlay_fetcher import (
    MapDataOverlayFetcher,
    OverlayResult,
    OverlayStatus,
    merge_overlay_onto_features,
)
from ddpmaps.core.maps.region_hierarchy import RegionHierarchyResolver, find_region
from ddpmaps.schemas.map_schema import MapDataPoint
from ddpmaps.utils.custom_logger import CustomLogger

logger = CustomLogger("ddpmaps.drilldown")


@dataclass(frozen=True)
class ParentSelection:
    column: str
    value: str


@dataclass(frozen=True)
class DrillDownPathEntry:
    region_id: Optional[int]
    region_name: str
    geojson_id: int
    geographic_column: str
    # every selection from the top level down to this one, this one last
    parent_selections: Tuple[ParentSelection, ...] = ()


@dataclass(frozen=True)
class Root:
    @property
    def path(self) -> Tuple[DrillDownPathEntry, ...]:
        return ()


@dataclass(frozen=True)
class Drilled:
    path: Tuple[DrillDownPathEntry, ...]

    def __post_init__(self):
        if not self.path:
            raise ValueError("a drilled state needs at least one path entry")


DrillState = Union[Root, Drilled]

ROOT = Root()


def drill_into(state: DrillState, entry: DrillDownPathEntry) -> Drilled:
    return Drilled(path=state.path + (entry,))


def drill_up(state: DrillState, target_level: Optional[int] = None) -> DrillState:
    """pop one level, or truncate to the breadcrumb at `target_level` (< 0 means root)"""
    if isinstance(state, Root):
        return state
    if target_level is None:
        remaining = state.path[:-1]
    elif target_level < 0:
        remaining = ()
    else:
        remaining = state.path[: target_level + 1]
    return Drilled(path=remaining) if remaining else ROOT


def drill_home(state: DrillState) -> Root:
    return ROOT


class DrillOutcome(str, Enum):
    DRILLED = "drilled"
    DRILLED_UP = "drilled_up"
    HOME = "home"
    INITIALIZED = "initialized"
    LEAF = "leaf"
    NO_OP = "no_op"
    NOT_CONFIGURED = "not_configured"
    SUPERSEDED = "superseded"
    FAILED = "failed"


@dataclass(frozen=True)
class DrillResult:
    outcome: DrillOutcome
    error_kind: Optional[MapErrorKind] = None
    message: Optional[str] = None
    error: Optional[MapsError] = None

    @property
    def changed(self) -> bool:
        return self.outcome in (
            DrillOutcome.DRILLED,
            DrillOutcome.DRILLED_UP,
            DrillOutcome.HOME,
            DrillOutcome.INITIALIZED,
        )


@dataclass(frozen=True)
class MapNotice:
    """A user facing message; `level` is one of success, info, warning, error"""

    level: str
    message: str
    description: Optional[str] = None


@dataclass(frozen=True)
class MapRenderState:
    """Everything the chart shell needs to draw the current level"""

    level: int
    map_name: Optional[str]
    geojson_id: Optional[int]
    geographic_column: Optional[str]
    overlay: Tuple[MapDataPoint, ...] = ()
    overlay_error: Optional[MapsError] = None
    drill_down_path: Tuple[DrillDownPathEntry, ...] = field(default_factory=tuple)


class DrillDownController:
    """Owns the drill-down path of one interactive map chart"""

    def __init__(
        self,
        config: MapChartConfig,
        resolver: RegionHierarchyResolver,
        geojson_manager: GeoJSONLifecycleManager,
        overlay_fetcher: MapDataOverlayFetcher,
        notify: Optional[Callable[[MapNotice], None]] = None,
        has_edit_permission: bool = False,
        dashboard_filters: Optional[Dict[str, Any]] = None,
    ):
        self.config = config
        self.resolver = resolver
        self.geojson_manager = geojson_manager
        self.overlay_fetcher = overlay_fetcher
        self.notify = notify
        self.has_edit_permission = has_edit_permission
        self.dashboard_filters = dict(dashboard_filters or {})
        self.zoom = DEFAULT_ZOOM

        self._state: DrillState = ROOT
        self._generation = 0
        self._handle: Optional[RenderNamespaceHandle] = None
        self._geometry: Optional[GeoJSONPayload] = None
        self._overlay: Tuple[MapDataPoint, ...] = ()
        self._overlay_error: Optional[MapsError] = None
        self._expected_overlay_key: Optional[str] = None

    # ---------------------------------------------------------------- state

    @property
    def chart_id(self) -> Optional[int]:
        return self.config.chart_id

    @property
    def state(self) -> DrillState:
        return self._state

    @property
    def drill_down_path(self) -> Tuple[DrillDownPathEntry, ...]:
        return self._state.path

    @property
    def current_level(self) -> int:
        return len(self._state.path)

    @property
    def active_geojson_id(self) -> Optional[int]:
        return self._geojson_id_for(self._state)

    @property
    def active_geographic_column(self) -> Optional[str]:
        if self._state.path:
            return self._state.path[-1].geographic_column
        return self.config.geographic_column

    @property
    def drill_down_filters(self) -> Dict[str, str]:
        filters = {}
        for entry in self._state.path:
            for selection in entry.parent_selections:
                filters[selection.column] = selection.value
        return filters

    @property
    def render_state(self) -> MapRenderState:
        return MapRenderState(
            level=self.current_level,
            map_name=self._handle.name if self._handle else None,
            geojson_id=self._geometry.geojson_id if self._geometry else None,
            geographic_column=self.active_geographic_column,
            overlay=self._overlay,
            overlay_error=self._overlay_error,
            drill_down_path=self._state.path,
        )

    def build_option(self) -> Optional[Dict[str, Any]]:
        """the chart option for the current level, None until a level is rendered"""
        if self._handle is None:
            return None
        return MapEChartsConfigGenerator.transform_map_config(
            self._handle.name,
            list(self._overlay),
            title=self.config.title,
            value_column=self.config.value_column,
            customizations=self.config.customizations,
            zoom=self.zoom,
        )

    def zoom_in(self) -> float:
        self.zoom = MapEChartsConfigGenerator.zoom_in(self.zoom)
        return self.zoom

    def zoom_out(self) -> float:
        self.zoom = MapEChartsConfigGenerator.zoom_out(self.zoom)
        return self.zoom

    def _geojson_id_for(self, state: DrillState) -> Optional[int]:
        if state.path:
            return state.path[-1].geojson_id
        return self.config.geojson_id

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    def _emit(self, level: str, message: str, description: Optional[str] = None) -> None:
        if self.notify is not None:
            self.notify(MapNotice(level=level, message=message, description=description))

    # ------------------------------------------------------------ lifecycle

    async def initialize(self) -> DrillResult:
        """render the top level of the chart"""
        generation = self._next_generation()
        missing = self.config.missing_fields
        if missing:
            logger.info(f"Map chart is missing {', '.join(missing)}, nothing to render yet")
            error = MapConfigurationError(
                f"Missing required fields: {', '.join(missing)}", missing_fields=list(missing)
            )
            return DrillResult(
                DrillOutcome.NO_OP, error_kind=error.kind, message=error.message, error=error
            )
        return await self._transition(generation, ROOT, DrillOutcome.INITIALIZED)

    async def close(self) -> None:
        """drop any pending transition and release the render namespace"""
        self._next_generation()
        self.geojson_manager.dispose_render_namespace(self._handle)
        self._handle = None
        self._geometry = None
        self._overlay = ()
        self._expected_overlay_key = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def set_dashboard_filters(
        self, dashboard_filters: Optional[Dict[str, Any]]
    ) -> OverlayResult:
        self.dashboard_filters = dict(dashboard_filters or {})
        return await self.refresh_overlay()

    # ---------------------------------------------------------- transitions

    async def handle_region_click(self, feature_name: str) -> DrillResult:
        """drill into the region behind a clicked boundary feature"""
        generation = self._next_generation()
        state = self._state
        next_level = self.config.next_level(len(state.path), feature_name)

        if next_level is None:
            self._emit(
                "info",
                "No further drill-down levels configured",
                "Configure additional layers in edit mode to enable deeper drill-down"
                if self.has_edit_permission
                else "This chart needs additional layers configured for deeper drill-down",
            )
            return DrillResult(
                DrillOutcome.NO_OP, message="No further drill-down levels configured"
            )

        if not next_level.configured:
            return self._not_configured(feature_name)

        if self.config.drill_down_mode == DrillDownMode.LAYERS:
            region_id = self._layer_region_id(next_level, feature_name)
            geojson_id = next_level.geojson_id
        else:
            try:
                located = await self._locate_child_level(generation, state, feature_name)
            except RegionResolutionError as error:
                logger.warning(error.message)
                self._emit("error", error.message)
                return DrillResult(
                    DrillOutcome.FAILED,
                    error_kind=error.kind,
                    message=error.message,
                    error=error,
                )
            except MapsError as error:
                return self._failed(generation, error)

            if located is None:
                if self._is_stale(generation):
                    return DrillResult(DrillOutcome.SUPERSEDED)
                logger.info(f"{feature_name} is the deepest drillable level")
                return DrillResult(DrillOutcome.LEAF, message=f"{feature_name} has no sub-regions")
            region_id, geojson_id = located

        entry = DrillDownPathEntry(
            region_id=region_id,
            region_name=feature_name,
            geojson_id=geojson_id,
            geographic_column=next_level.column,
            parent_selections=self._selections_for(state, feature_name),
        )
        result = await self._transition(
            generation, drill_into(state, entry), DrillOutcome.DRILLED
        )
        if result.outcome == DrillOutcome.DRILLED:
            logger.info(f"Drilled into {feature_name} (level {next_level.level})")
            if self.config.drill_down_mode != DrillDownMode.LAYERS:
                self._emit(
                    "success", f"Drilling down to {next_level.label.lower()} in {feature_name}"
                )
        return result

    async def handle_drill_up(self, target_level: Optional[int] = None) -> DrillResult:
        """go up one level, or back to the breadcrumb at `target_level`"""
        generation = self._next_generation()
        new_state = drill_up(self._state, target_level)
        if new_state == self._state:
            return DrillResult(DrillOutcome.NO_OP)
        return await self._transition(generation, new_state, DrillOutcome.DRILLED_UP)

    async def handle_drill_home(self) -> DrillResult:
        generation = self._next_generation()
        if isinstance(self._state, Root):
            return DrillResult(DrillOutcome.NO_OP)
        return await self._transition(generation, drill_home(self._state), DrillOutcome.HOME)

    async def refresh_overlay(self) -> OverlayResult:
        """fetch values for the current level; a failure keeps the values on screen"""
        request = self.overlay_fetcher.prepare(
            self.chart_id,
            self.active_geographic_column,
            self.config.value_column,
            self.config.aggregate_function,
            list(self.config.chart_filters),
            self.config.overlay_extra_config(),
            schema_name=self.config.schema_name,
            table_name=self.config.table_name,
            drill_down_filters=self.drill_down_filters,
            dashboard_filters=self.dashboard_filters,
        )
        if request is None:
            self._expected_overlay_key = None
            return OverlayResult(status=OverlayStatus.SKIPPED)

        self._expected_overlay_key = request.key
        result = await self.overlay_fetcher.fetch_prepared(request)

        if result.key != self._expected_overlay_key or self._geometry is None:
            logger.info("Discarding overlay response for a level that is no longer shown")
            return result

        if result.ok:
            merged = merge_overlay_onto_features(self._geometry.geojson_data, result.data)
            self._overlay = merged.points
            self._overlay_error = None
        else:
            self._overlay_error = result.error
        return result

    # -------------------------------------------------------------- helpers

    async def _locate_child_level(
        self, generation: int, state: DrillState, feature_name: str
    ) -> Optional[Tuple[int, int]]:
        """(region id, geojson id) for the level below `feature_name`, None for a leaf"""
        parent_id = state.path[-1].region_id if state.path else self.config.root_region_id
        if parent_id is None and self.config.country_code:
            regions = await self.resolver.get_regions(
                self.config.country_code, self.resolver.root_region_type
            )
        else:
            regions = await self.resolver.get_children(parent_id)
        if self._is_stale(generation):
            return None

        region = find_region(regions, feature_name)
        if region is None:
            raise RegionResolutionError(feature_name)

        if self.resolver.has_children(region.id) is False:
            return None
        children = await self.resolver.get_children(region.id)
        if not children or self._is_stale(generation):
            return None

        geojson = pick_default_geojson(await self.geojson_manager.list_geojsons(region.id))
        if geojson is None:
            raise MapFetchError("geometry", f"no boundary data available for {feature_name}")
        return region.id, geojson.id

    def _layer_region_id(self, next_level: NextLevel, feature_name: str) -> Optional[int]:
        layer = self.config.layers[next_level.level]
        for selected in layer.selected_regions:
            if selected.region_name == feature_name and selected.region_id is not None:
                return selected.region_id
        return layer.region_id

    def _selections_for(self, state: DrillState, feature_name: str) -> Tuple[ParentSelection, ...]:
        inherited = state.path[-1].parent_selections if state.path else ()
        return inherited + (
            ParentSelection(column=self.active_geographic_column or "", value=feature_name),
        )

    def _not_configured(self, feature_name: str) -> DrillResult:
        if self.config.is_excluded_by_filter(feature_name):
            message = f"{feature_name} excluded by filter"
            self._emit(
                "warning",
                message,
                "This region is filtered out and not available for drill-down",
            )
        else:
            message = f"{feature_name} not configured for drill-down"
            self._emit(
                "info",
                message,
                "Configure this region in edit mode to enable drill-down"
                if self.has_edit_permission
                else "This region is not configured for drill-down",
            )
        return DrillResult(DrillOutcome.NOT_CONFIGURED, message=message)

    def _failed(self, generation: int, error: MapsError) -> DrillResult:
        if self._is_stale(generation):
            return DrillResult(DrillOutcome.SUPERSEDED)
        logger.error(f"Drill-down transition failed: {error.message}")
        self._emit("error", error.message)
        return DrillResult(
            DrillOutcome.FAILED, error_kind=error.kind, message=error.message, error=error
        )

    async def _transition(
        self, generation: int, new_state: DrillState, outcome: DrillOutcome
    ) -> DrillResult:
        """fetch and register the geometry for `new_state`, then commit it"""
        try:
            payload = await self.geojson_manager.load(self._geojson_id_for(new_state))
        except MapsError as error:
            return self._failed(generation, error)
        if self._is_stale(generation):
            return DrillResult(DrillOutcome.SUPERSEDED)
        if payload is None:
            return self._failed(generation, MapFetchError("geometry", "no geojson configured"))

        handle = self.geojson_manager.register_for_render(payload)
        previous = self._handle
        self._state = new_state
        self._handle = handle
        self._geometry = payload
        self._overlay = ()
        self._overlay_error = None
        self.geojson_manager.dispose_render_namespace(previous)

        overlay = await self.refresh_overlay()
        if overlay.status == OverlayStatus.ERROR and not self._is_stale(generation):
            self._emit("warning", "Could not load map values", overlay.error.message)
        return DrillResult(outcome)

