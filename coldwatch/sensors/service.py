"""Store-backed sensor views: chart series for one parameter, vibration stats."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from pydantic import BaseModel, Field

from coldwatch.data.schemas import (
    SENSOR_COLUMNS,
    SENSOR_UNITS,
    VIBRATION_AXES,
    AggregateStats,
    DateRange,
    Trend,
)
from coldwatch.monitoring.metrics import record_fetch
from coldwatch.series.downsample import DEFAULT_MAX_POINTS, ChartSeries, build_chart
from coldwatch.series.filtering import day_bounds, filter_series, points_from_rows, timeframe_range
from coldwatch.series.stats import aggregate_series, series_trend, vibration_summary
from coldwatch.store.base import DataStore, Query

logger = logging.getLogger(__name__)

VIBRATION_ROWS = 100


def _localize(date_range: DateRange, now: datetime) -> DateRange:
    """Give naive range bounds the timezone of ``now``."""
    if now.tzinfo is None:
        return date_range
    return DateRange(
        start=date_range.start if date_range.start.tzinfo else date_range.start.replace(tzinfo=now.tzinfo),
        end=date_range.end if date_range.end.tzinfo else date_range.end.replace(tzinfo=now.tzinfo),
    )


class SeriesView(BaseModel):
    """Everything the chart screen shows for one parameter."""

    parameter: str
    unit: str
    timeframe: str
    start: datetime
    end: datetime
    chart: ChartSeries = Field(default_factory=ChartSeries)
    stats: AggregateStats = Field(default_factory=AggregateStats)
    trend: Trend = Field(default_factory=Trend)
    point_count: int = 0
    latest_value: float | None = None
    error: str | None = None


class VibrationView(BaseModel):
    components: dict[str, AggregateStats] = Field(default_factory=dict)
    rows: int = 0
    error: str | None = None


class SensorService:
    """Fetches raw sensor rows and runs them through the series pipeline."""

    def __init__(
        self,
        store: DataStore,
        table: str = "sensor_data",
        lookback_days: int = 30,
        max_points: int = DEFAULT_MAX_POINTS,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._table = table
        self._lookback_days = lookback_days
        self._max_points = max_points
        self._now = now

    def _select(self, query: Query) -> list[dict]:
        started = time.perf_counter()
        try:
            rows = self._store.select(query)
        except Exception:
            record_fetch("sensors", (time.perf_counter() - started) * 1000, ok=False)
            raise
        record_fetch("sensors", (time.perf_counter() - started) * 1000, ok=True)
        return rows

    def series(
        self,
        parameter: str,
        timeframe: str = "1w",
        date_range: DateRange | None = None,
    ) -> SeriesView:
        """Filtered, downsampled series with stats and trend.

        ``date_range`` overrides the preset timeframe (the "custom" case).
        """
        if parameter not in SENSOR_COLUMNS:
            raise ValueError(f"Unknown sensor parameter: {parameter}")

        now = self._now()
        date_range = _localize(date_range, now) if date_range else timeframe_range(timeframe, now)
        view = SeriesView(
            parameter=parameter,
            unit=SENSOR_UNITS.get(parameter, ""),
            timeframe=timeframe,
            start=date_range.start,
            end=date_range.end,
        )

        # Earliest of the lookback window and the start of the first requested day
        since = min(now - timedelta(days=self._lookback_days), day_bounds(date_range)[0])
        query = (
            Query(self._table)
            .select("timestamp", parameter)
            .gte("timestamp", since)
            .order("timestamp")
        )
        try:
            rows = self._select(query)
        except Exception as e:
            logger.warning("Error fetching %s series: %s", parameter, e)
            return view.model_copy(update={"error": f"fetch failed: {e}"})

        points = filter_series(points_from_rows(rows, parameter), date_range)
        logger.info("%s: %d rows, %d points in range", parameter, len(rows), len(points))

        return view.model_copy(
            update={
                "chart": build_chart(points, timeframe, self._max_points),
                "stats": aggregate_series(points),
                "trend": series_trend(points),
                "point_count": len(points),
                "latest_value": points[-1].value if points else None,
            }
        )

    def vibration(self, limit: int = VIBRATION_ROWS) -> VibrationView:
        """Stats for overall vibration and each axis over the newest ``limit`` rows."""
        query = (
            Query(self._table)
            .select("timestamp", "compressor_vibration", *VIBRATION_AXES)
            .order("timestamp", descending=True)
            .limit(limit)
        )
        try:
            rows = self._select(query)
        except Exception as e:
            logger.warning("Error fetching vibration data: %s", e)
            return VibrationView(error=f"fetch failed: {e}")

        rows.reverse()
        return VibrationView(components=vibration_summary(rows), rows=len(rows))
