"""Date-range filtering of a single parameter's time series.

Pipeline:
    sensor rows → points_from_rows → filter_series → downsample
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import Iterable, Mapping, Sequence

import pandas as pd

from coldwatch.data.schemas import SENSOR_COLUMNS, DateRange, TimeSeriesPoint
from coldwatch.data.validate import RowReport, coerce_value, parse_timestamp

logger = logging.getLogger(__name__)

TIMEFRAMES: tuple[str, ...] = ("6h", "1d", "1w", "1m", "3m")


# ──────────────────────────────────────────────
# Rows → points
# ──────────────────────────────────────────────


def points_from_rows(rows: Iterable[Mapping[str, object]], parameter: str) -> list[TimeSeriesPoint]:
    """Extract an ordered series for one parameter from sensor rows.

    Rows without a parseable timestamp or a finite numeric value for
    ``parameter`` are dropped. Input order is preserved.
    """
    if parameter not in SENSOR_COLUMNS:
        raise ValueError(f"Unknown sensor parameter: {parameter}")

    points: list[TimeSeriesPoint] = []
    report = RowReport()
    for idx, row in enumerate(rows):
        ts = parse_timestamp(row.get("timestamp"))
        value = coerce_value(row.get(parameter))
        if ts is None:
            report.reject(f"row {idx}: bad timestamp {row.get('timestamp')!r}")
            continue
        if value is None:
            report.reject(f"row {idx}: bad {parameter} value {row.get(parameter)!r}")
            continue
        points.append(TimeSeriesPoint(timestamp=ts, value=value))
        report.accepted += 1

    report.log(f"{parameter} series")
    return points


# ──────────────────────────────────────────────
# Date range helpers
# ──────────────────────────────────────────────


def day_bounds(date_range: DateRange) -> tuple[datetime, datetime]:
    """Widen a range to 00:00:00.000 on the start day and 23:59:59.999 on the end day.

    Each bound keeps its own tzinfo, so the day is the one local to that bound.
    """
    start = datetime.combine(date_range.start.date(), time.min, tzinfo=date_range.start.tzinfo)
    end = datetime.combine(
        date_range.end.date(),
        time(23, 59, 59, 999_000),
        tzinfo=date_range.end.tzinfo,
    )
    return start, end


def timeframe_range(timeframe: str, now: datetime) -> DateRange:
    """Return the range ending at ``now`` for a preset chart timeframe."""
    if timeframe == "6h":
        start = now - timedelta(hours=6)
    elif timeframe == "1d":
        start = now - timedelta(days=1)
    elif timeframe == "1w":
        start = now - timedelta(weeks=1)
    elif timeframe == "1m":
        start = (pd.Timestamp(now) - pd.DateOffset(months=1)).to_pydatetime()
    elif timeframe == "3m":
        start = (pd.Timestamp(now) - pd.DateOffset(months=3)).to_pydatetime()
    else:
        raise ValueError(f"Unknown timeframe: {timeframe}. Use one of {TIMEFRAMES}.")
    return DateRange(start=start, end=now)


# ──────────────────────────────────────────────
# Filter
# ──────────────────────────────────────────────


def _within(ts: object, start: datetime, end: datetime) -> bool:
    if not isinstance(ts, datetime):
        return False
    try:
        return start <= ts <= end
    except TypeError:
        # naive vs aware comparison
        return False


def filter_series(points: Sequence[TimeSeriesPoint], date_range: DateRange) -> list[TimeSeriesPoint]:
    """Keep the points whose timestamp falls inside the full-day range.

    Order is preserved and duplicate timestamps are kept. Points whose
    timestamp cannot be compared against the bounds are excluded.
    """
    start, end = day_bounds(date_range)
    filtered = [p for p in points if _within(p.timestamp, start, end)]
    logger.debug("Filtered %d points to %d within %s .. %s", len(points), len(filtered), start, end)
    return filtered
