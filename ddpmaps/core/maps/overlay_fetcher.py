"""Aggregated value overlay for map charts

Builds the canonical map-data-overlay request for the current drill level and
filter set, coalesces identical requests and joins the returned values onto
the boundary features being rendered.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ddpmaps.core.maps.api_client import MapsApiClient
from ddpmaps.core.maps.config import get_maps_config
from ddpmaps.core.maps.errors import MapsError
from ddpmaps.core.maps.region_hierarchy import normalize_region_name
from ddpmaps.schemas.map_schema import (
    ChartFilter,
    ChartMetric,
    MapDataOverlayPayload,
    MapDataPoint,
)
from ddpmaps.utils.custom_logger import CustomLogger
from ddpmaps.utils.helpers import hash_dict, stable_json

logger = CustomLogger("ddpmaps.overlay")

OVERLAY_VALUE_ALIAS = "value"
COUNT_ALL_COLUMN = "*"


class OverlayStatus(str, Enum):
    SKIPPED = "skipped"  # configuration incomplete, nothing was requested
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class OverlayRequest:
    key: str
    payload: MapDataOverlayPayload


@dataclass(frozen=True)
class OverlayResult:
    status: OverlayStatus
    key: Optional[str] = None
    data: Tuple[MapDataPoint, ...] = ()
    error: Optional[MapsError] = None

    @property
    def ok(self) -> bool:
        return self.status == OverlayStatus.OK


@dataclass(frozen=True)
class MergedOverlay:
    points: Tuple[MapDataPoint, ...]
    matched_count: int
    total_count: int


def normalize_chart_filters(raw_filters) -> List[ChartFilter]:
    """one filter representation for both the legacy {column: value} dict and the list form"""
    if not raw_filters:
        return []
    if isinstance(raw_filters, dict):
        return [
            ChartFilter(column=column, operator="equals", value=value)
            for column, value in raw_filters.items()
        ]
    return [
        item if isinstance(item, ChartFilter) else ChartFilter.model_validate(item)
        for item in raw_filters
    ]


def build_overlay_payload(
    schema_name: Optional[str],
    table_name: Optional[str],
    geographic_column: Optional[str],
    value_column: Optional[str],
    aggregation_function: Optional[str],
    chart_filters=None,
    extra_config: Optional[Dict[str, Any]] = None,
    drill_down_filters: Optional[Dict[str, Any]] = None,
    dashboard_filters: Optional[Dict[str, Any]] = None,
) -> Optional[MapDataOverlayPayload]:
    """The overlay request body, or None while the chart is missing a required field

    COUNT does not need a value column; it is sent as COUNT(*).
    """
    aggregation = (aggregation_function or "").lower()
    is_count = aggregation == "count"

    if not all([schema_name, table_name, geographic_column, aggregation]):
        return None
    if not value_column and not is_count:
        return None

    extra_config = dict(extra_config or {})
    unified_filters = normalize_chart_filters(chart_filters) or normalize_chart_filters(
        extra_config.get("filters")
    )
    extra_config["filters"] = [f.model_dump() for f in unified_filters]

    return MapDataOverlayPayload(
        schema_name=schema_name,
        table_name=table_name,
        geographic_column=geographic_column,
        value_column=value_column or COUNT_ALL_COLUMN,
        metrics=[
            ChartMetric(
                column=value_column or None,
                aggregation=aggregation,
                alias=OVERLAY_VALUE_ALIAS,
            )
        ],
        filters=dict(drill_down_filters or {}),
        chart_filters=unified_filters,
        dashboard_filters=dict(dashboard_filters or {}),
        extra_config=extra_config,
    )


def overlay_filter_hash(payload: MapDataOverlayPayload) -> str:
    """hash of only the fields that narrow down the rows being aggregated"""
    return hash_dict(
        {
            "filters": payload.filters,
            "chart_filters": [f.model_dump(mode="json") for f in payload.chart_filters],
            "dashboard_filters": payload.dashboard_filters,
            "extra_config_filters": payload.extra_config.get("filters", []),
        }
    )


def overlay_cache_key(chart_id: Optional[int], payload: MapDataOverlayPayload) -> str:
    return stable_json(
        {
            "chart_id": chart_id,
            "request": payload.model_dump(mode="json"),
            "filter_hash": overlay_filter_hash(payload),
        }
    )


def merge_overlay_onto_features(geojson_data: dict, points) -> MergedOverlay:
    """One point per boundary feature, matched on the normalized region name

    Features without a row get a None value, which is not the same as 0.
    """
    data_lookup = {}
    for point in points or []:
        normalized = normalize_region_name(point.name)
        if normalized:
            data_lookup[normalized] = point.value

    merged = []
    matched_count = 0
    for feature in geojson_data.get("features", []):
        region_name = (feature.get("properties") or {}).get("name")
        if region_name is None:
            continue
        normalized = normalize_region_name(region_name)
        if normalized in data_lookup:
            matched_count += 1
        merged.append(MapDataPoint(name=str(region_name), value=data_lookup.get(normalized)))

    logger.info(f"Matched {matched_count} out of {len(merged)} regions")
    return MergedOverlay(points=tuple(merged), matched_count=matched_count, total_count=len(merged))


class MapDataOverlayFetcher:
    """Fetches overlay values, sharing identical requests within the dedupe window

    Identical requests already in flight share one network call, and a
    successful response is reused for `dedupe_interval` seconds. Failures are
    never reused.
    """

    def __init__(
        self,
        client: MapsApiClient,
        dedupe_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.dedupe_interval = (
            dedupe_interval if dedupe_interval is not None else get_maps_config().dedupe_interval
        )
        self.clock = clock
        self._inflight: Dict[str, asyncio.Task] = {}
        self._recent: Dict[str, Tuple[float, Tuple[MapDataPoint, ...]]] = {}

    def prepare(
        self,
        chart_id: Optional[int],
        geographic_column: Optional[str],
        value_column: Optional[str],
        aggregation_function: Optional[str],
        chart_filters=None,
        extra_config: Optional[Dict[str, Any]] = None,
        *,
        schema_name: Optional[str],
        table_name: Optional[str],
        drill_down_filters: Optional[Dict[str, Any]] = None,
        dashboard_filters: Optional[Dict[str, Any]] = None,
    ) -> Optional[OverlayRequest]:
        payload = build_overlay_payload(
            schema_name,
            table_name,
            geographic_column,
            value_column,
            aggregation_function,
            chart_filters=chart_filters,
            extra_config=extra_config,
            drill_down_filters=drill_down_filters,
            dashboard_filters=dashboard_filters,
        )
        if payload is None:
            return None
        return OverlayRequest(key=overlay_cache_key(chart_id, payload), payload=payload)

    async def fetch(
        self,
        chart_id: Optional[int],
        geographic_column: Optional[str],
        value_column: Optional[str],
        aggregation_function: Optional[str],
        chart_filters=None,
        extra_config: Optional[Dict[str, Any]] = None,
        *,
        schema_name: Optional[str],
        table_name: Optional[str],
        drill_down_filters: Optional[Dict[str, Any]] = None,
        dashboard_filters: Optional[Dict[str, Any]] = None,
    ) -> OverlayResult:
        request = self.prepare(
            chart_id,
            geographic_column,
            value_column,
            aggregation_function,
            chart_filters,
            extra_config,
            schema_name=schema_name,
            table_name=table_name,
            drill_down_filters=drill_down_filters,
            dashboard_filters=dashboard_filters,
        )
        if request is None:
            logger.debug("Map overlay skipped, chart configuration incomplete")
            return OverlayResult(status=OverlayStatus.SKIPPED)
        return await self.fetch_prepared(request)

    async def fetch_prepared(self, request: OverlayRequest) -> OverlayResult:
        key = request.key
        self._prune()

        recent = self._recent.get(key)
        if recent is not None:
            return OverlayResult(status=OverlayStatus.OK, key=key, data=recent[1])

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self.client.post_map_data_overlay(request.payload))
            self._inflight[key] = task
        try:
            response = await asyncio.shield(task)
        except MapsError as error:
            logger.error(f"Map overlay fetch failed: {error.message}")
            return OverlayResult(status=OverlayStatus.ERROR, key=key, error=error)
        finally:
            if self._inflight.get(key) is task and task.done():
                self._inflight.pop(key, None)

        data = tuple(response.data)
        self._recent[key] = (self.clock(), data)
        return OverlayResult(status=OverlayStatus.OK, key=key, data=data)

    def _prune(self) -> None:
        now = self.clock()
        expired = [
            key
            for key, (fetched_at, _data) in self._recent.items()
            if now - fetched_at >= self.dedupe_interval
        ]
        for key in expired:
            del self._recent[key]
