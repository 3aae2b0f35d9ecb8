"""Throwaway map instances for PNG / PDF export

An export builds its own off-screen chart, independent of any interactive
one: its own container, its own chart instance and its own namespace
registration. `ExportSession.cleanup` releases all three and has to run on
every path, so `create_map_chart_for_export` cleans up before raising and
callers that get a session back either call `cleanup_map_chart` or use
`export_session`.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Tuple

from ddpmaps.core.maps import render_engine
from ddpmaps.core.maps.api_client import MapsApiClient
from ddpmaps.core.maps.config import MapsConfig, get_maps_config
from ddpmaps.core.maps.echarts_map_config import MapEChartsConfigGenerator
from ddpmaps.core.maps.errors import MapExportError, MapsError
from ddpmaps.core.maps.geojson_lifecycle import (
    GeoJSONLifecycleManager,
    GeoJSONPayload,
    RenderNamespaceHandle,
)
from ddpmaps.core.maps.map_chart_config import MapChartConfig, resolve_map_chart_config
from ddpmaps.core.maps.overlay_fetcher import MapDataOverlayFetcher, merge_overlay_onto_features
from ddpmaps.schemas.map_schema import MapDataPoint
from ddpmaps.utils.custom_logger import CustomLogger

logger = CustomLogger("ddpmaps.export")

EXPORT_NAMESPACE_PREFIX = "export-map"
EXPORT_FORMATS = ("png", "pdf")


@dataclass(frozen=True)
class MapExportData:
    config: MapChartConfig
    geojson: GeoJSONPayload
    overlay: Tuple[MapDataPoint, ...] = ()


class ExportSession:
    """Container, chart instance and namespace of one export attempt"""

    def __init__(self, geojson_manager: GeoJSONLifecycleManager, format: str = "png"):
        self.geojson_manager = geojson_manager
        self.format = format
        self.container: Optional[render_engine.OffscreenContainer] = None
        self.instance: Optional[render_engine.ChartInstance] = None
        self.handle: Optional[RenderNamespaceHandle] = None
        self._cleaned_up = False

    @property
    def map_name(self) -> Optional[str]:
        return self.handle.name if self.handle else None

    @property
    def cleaned_up(self) -> bool:
        return self._cleaned_up

    def cleanup(self) -> None:
        """dispose the instance, remove the container and drop the registration; runs once"""
        if self._cleaned_up:
            return
        self._cleaned_up = True
        try:
            try:
                if self.instance is not None:
                    self.instance.dispose()
            finally:
                if self.container is not None:
                    self.container.remove()
        finally:
            self.geojson_manager.dispose_render_namespace(self.handle)
        logger.debug(f"Cleaned up export session {self.map_name}")


class ExportRenderer:
    """Renders a saved map chart off-screen for export"""

    def __init__(
        self,
        client: MapsApiClient,
        geojson_manager: Optional[GeoJSONLifecycleManager] = None,
        overlay_fetcher: Optional[MapDataOverlayFetcher] = None,
        config: Optional[MapsConfig] = None,
    ):
        self.client = client
        self.config = config or get_maps_config()
        self.geojson_manager = geojson_manager or GeoJSONLifecycleManager(client)
        self.overlay_fetcher = overlay_fetcher or MapDataOverlayFetcher(
            client, dedupe_interval=self.config.dedupe_interval
        )

    async def fetch_map_export_data(self, chart_id: int) -> MapExportData:
        """chart config, geometry and (best effort) values for the chart's top level"""
        try:
            chart = await self.client.get_chart(chart_id)
        except MapsError as error:
            raise MapExportError(f"Could not load chart {chart_id}: {error.message}") from error

        if chart.chart_type != "map":
            raise MapExportError(f"Chart {chart_id} is not a map chart")

        map_config = resolve_map_chart_config(chart)
        if not map_config.geojson_id:
            raise MapExportError(f"Map chart {chart_id} has no boundary data to export")

        try:
            geojson = await self.geojson_manager.load(map_config.geojson_id)
        except MapsError as error:
            raise MapExportError(
                f"Could not load boundaries for chart {chart_id}: {error.message}"
            ) from error

        result = await self.overlay_fetcher.fetch(
            chart_id,
            map_config.geographic_column,
            map_config.value_column,
            map_config.aggregate_function,
            list(map_config.chart_filters),
            map_config.overlay_extra_config(),
            schema_name=map_config.schema_name,
            table_name=map_config.table_name,
        )
        if result.ok:
            overlay = merge_overlay_onto_features(geojson.geojson_data, result.data).points
        else:
            # boundaries alone are still a useful export
            if result.error is not None:
                logger.warning(f"Exporting chart {chart_id} without values: {result.error.message}")
            overlay = ()

        return MapExportData(config=map_config, geojson=geojson, overlay=overlay)

    async def create_map_chart_for_export(
        self, data: MapExportData, title: Optional[str] = None, format: str = "png"
    ) -> ExportSession:
        session = ExportSession(self.geojson_manager, format=format)
        try:
            session.container = render_engine.OffscreenContainer(
                self.config.export_width_px,
                self.config.export_height_px,
                self.config.export_dpi,
            )
            session.handle = self.geojson_manager.register_for_render(
                data.geojson, prefix=EXPORT_NAMESPACE_PREFIX
            )
            session.instance = render_engine.init(session.container, self.geojson_manager.registry)
            option = MapEChartsConfigGenerator.transform_map_config(
                session.handle.name,
                list(data.overlay),
                title=title or data.config.title,
                value_column=data.config.value_column,
                customizations=data.config.customizations,
            )
            session.instance.set_option(option)
            await asyncio.sleep(self.config.export_settle_delay)
        except Exception as error:
            session.cleanup()
            logger.exception(f"Map export failed: {error}")
            if isinstance(error, MapExportError):
                raise
            raise MapExportError(f"Failed to render map for export: {error}") from error
        except BaseException:
            session.cleanup()
            raise

        return session

    async def export_map_chart(
        self, chart_id: int, title: Optional[str] = None, format: str = "png"
    ) -> ExportSession:
        """a rendered session; the caller saves it and then calls `cleanup_map_chart`"""
        if format not in EXPORT_FORMATS:
            raise MapExportError(f"Unsupported export format {format}")
        data = await self.fetch_map_export_data(chart_id)
        session = await self.create_map_chart_for_export(data, title=title, format=format)
        logger.info(f"Rendered chart {chart_id} for {format} export as {session.map_name}")
        return session

    @staticmethod
    def cleanup_map_chart(session: Optional[ExportSession]) -> None:
        if session is not None:
            session.cleanup()

    @asynccontextmanager
    async def export_session(
        self, chart_id: int, title: Optional[str] = None, format: str = "png"
    ) -> AsyncIterator[ExportSession]:
        session = await self.export_map_chart(chart_id, title=title, format=format)
        try:
            yield session
        finally:
            self.cleanup_map_chart(session)


def save_export(session: ExportSession, fp, format: Optional[str] = None) -> None:
    """write the rendered session to `fp` as PNG or PDF"""
    format = format or session.format
    if format not in EXPORT_FORMATS:
        raise MapExportError(f"Unsupported export format {format}")
    if session.instance is None or session.cleaned_up:
        raise MapExportError("Export session has already been cleaned up")
    try:
        session.instance.save(fp, format=format)
    except (MapsError, OSError, ValueError) as error:
        raise MapExportError(f"Failed to write {format} export: {error}") from error
