"""Window statistics and trend indicators for sensor series.

All results are rounded to 2 decimals for display. Empty input gives the
all-zero AggregateStats with count=0, which callers use to tell "no data"
apart from a real zero reading.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Sequence

import numpy as np

from coldwatch.data.schemas import (
    DECREASING_IS_BETTER,
    VIBRATION_AXES,
    AggregateStats,
    ReadingChange,
    TimeSeriesPoint,
    Trend,
)
from coldwatch.data.validate import coerce_value

logger = logging.getLogger(__name__)

STABLE_EPSILON = 0.001


# ──────────────────────────────────────────────
# Aggregate
# ──────────────────────────────────────────────


def aggregate(values: Iterable[float]) -> AggregateStats:
    """Average, max and min of the finite values, rounded to 2 decimals."""
    arr = np.asarray(list(values), dtype=np.float64)
    arr = arr[np.isfinite(arr)]
    if arr.size == 0:
        return AggregateStats()

    return AggregateStats(
        average=round(float(arr.mean()), 2),
        max=round(float(arr.max()), 2),
        min=round(float(arr.min()), 2),
        count=int(arr.size),
    )


def aggregate_series(points: Sequence[TimeSeriesPoint]) -> AggregateStats:
    return aggregate(p.value for p in points)


# ──────────────────────────────────────────────
# Trend
# ──────────────────────────────────────────────


def trend_percentage(first: float, last: float) -> Trend:
    """Percentage change from first to last.

    A zero baseline falls back to absolute_change * 100, which is not a true
    percentage; treat its magnitude as informational.
    """
    absolute_change = last - first
    if first != 0:
        value = absolute_change / abs(first) * 100
    else:
        value = absolute_change * 100

    return Trend(
        value=round(value, 2),
        is_positive=value >= 0,
        absolute_change=round(absolute_change, 2),
    )


def series_trend(points: Sequence[TimeSeriesPoint]) -> Trend:
    """Trend between the first and last point; neutral for fewer than 2 points."""
    if len(points) < 2:
        return Trend()
    return trend_percentage(points[0].value, points[-1].value)


# ──────────────────────────────────────────────
# Snapshot change
# ──────────────────────────────────────────────


def reading_change(
    current: Mapping[str, object],
    previous: Mapping[str, object],
    parameter: str,
) -> ReadingChange:
    """Compare one parameter between the current and previous reading.

    Missing or non-numeric values on either side count as no change.
    """
    cur = coerce_value(current.get(parameter))
    prev = coerce_value(previous.get(parameter))
    diff = cur - prev if cur is not None and prev is not None else 0.0

    if abs(diff) < STABLE_EPSILON:
        return ReadingChange(parameter=parameter, difference=0.0, direction="stable")

    direction = "up" if diff > 0 else "down"
    decreasing_better = parameter in DECREASING_IS_BETTER
    improving = (diff > 0) != decreasing_better

    return ReadingChange(
        parameter=parameter,
        difference=round(diff, 2),
        direction=direction,
        improving=improving,
    )


# ──────────────────────────────────────────────
# Vibration
# ──────────────────────────────────────────────


def vibration_summary(rows: Sequence[Mapping[str, object]]) -> dict[str, AggregateStats]:
    """Stats for overall compressor vibration and each axis component."""
    summary: dict[str, AggregateStats] = {}
    for field_name in ("compressor_vibration",) + VIBRATION_AXES:
        values = [v for v in (coerce_value(r.get(field_name)) for r in rows) if v is not None]
        summary[field_name] = aggregate(values)

    logger.debug("Vibration summary over %d rows", len(rows))
    return summary
