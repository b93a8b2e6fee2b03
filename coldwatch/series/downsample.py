"""Downsampling of a filtered series into plottable points and axis labels."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Sequence

from pydantic import BaseModel, Field

from coldwatch.data.schemas import TimeSeriesPoint

logger = logging.getLogger(__name__)

DEFAULT_MAX_POINTS = 100


@dataclass(frozen=True)
class DownsampleResult:
    """Points to plot plus, per point, whether its axis label is shown."""

    plot_points: list[TimeSeriesPoint] = field(default_factory=list)
    label_mask: list[bool] = field(default_factory=list)

    @property
    def values(self) -> list[float]:
        return [p.value for p in self.plot_points]

    @property
    def labeled_indices(self) -> list[int]:
        return [i for i, shown in enumerate(self.label_mask) if shown]


class ChartSeries(BaseModel):
    """Render-ready chart data. Unlabeled positions carry an empty string."""

    labels: list[str] = Field(default_factory=list)
    values: list[float] = Field(default_factory=list)
    timestamps: list[datetime] = Field(default_factory=list)


# ──────────────────────────────────────────────
# Point selection
# ──────────────────────────────────────────────


def select_plot_points(points: Sequence[TimeSeriesPoint], max_points: int) -> list[TimeSeriesPoint]:
    """Take every step-th point so at most max_points (+1 for the last) remain."""
    if max_points < 1:
        raise ValueError(f"max_points must be >= 1, got {max_points}")

    if len(points) <= max_points:
        return list(points)

    step = math.ceil(len(points) / max_points)
    selected = list(points[::step])

    # Always include the last point
    if selected[-1] is not points[-1]:
        selected.append(points[-1])

    logger.debug("Downsampled %d points to %d (step=%d)", len(points), len(selected), step)
    return selected


def select_label_mask(num_points: int, max_labels: int) -> list[bool]:
    """Choose which positions get an axis label.

    First and last are always labeled; interior labels sit at an even stride
    and the total never exceeds max_labels.
    """
    if max_labels < 2:
        raise ValueError(f"max_labels must be >= 2, got {max_labels}")

    if num_points <= max_labels:
        return [True] * num_points

    stride = num_points // (max_labels - 1)
    indices = {0}
    for i in range(stride, num_points - 1, stride):
        if len(indices) >= max_labels - 1:
            break
        indices.add(i)
    indices.add(num_points - 1)

    return [i in indices for i in range(num_points)]


def downsample(
    points: Sequence[TimeSeriesPoint],
    max_points: int = DEFAULT_MAX_POINTS,
    max_labels: int = 6,
) -> DownsampleResult:
    """Reduce a series to at most max_points + 1 points with a label mask.

    When the input has two or more points, so does the output.
    """
    plot_points = select_plot_points(points, max_points)
    return DownsampleResult(
        plot_points=plot_points,
        label_mask=select_label_mask(len(plot_points), max_labels),
    )


# ──────────────────────────────────────────────
# Labels
# ──────────────────────────────────────────────


def max_labels_for(timeframe: str) -> int:
    """Maximum number of x-axis labels for a chart timeframe."""
    if timeframe in ("6h", "1d"):
        return 4
    if timeframe == "1w":
        return 5
    return 6


def _clock(ts: datetime) -> str:
    hour = ts.hour % 12 or 12
    suffix = "AM" if ts.hour < 12 else "PM"
    return f"{hour}:{ts.minute:02d} {suffix}"


def format_axis_label(ts: datetime, timeframe: str) -> str:
    """Format a timestamp for the x-axis at the granularity of the timeframe."""
    if timeframe in ("6h", "1d"):
        return _clock(ts)
    if timeframe == "1w":
        return f"{ts.strftime('%a, %b')} {ts.day}"
    if timeframe in ("1m", "3m"):
        return f"{ts.strftime('%b')} {ts.day}"
    return f"{ts.strftime('%b')} {ts.day}, {ts.year}"


def axis_labels(result: DownsampleResult, formatter: Callable[[datetime], str]) -> list[str]:
    """One label per plot point; hidden positions map to ''."""
    return [
        formatter(p.timestamp) if shown else ""
        for p, shown in zip(result.plot_points, result.label_mask)
    ]


def build_chart(
    points: Sequence[TimeSeriesPoint],
    timeframe: str,
    max_points: int = DEFAULT_MAX_POINTS,
) -> ChartSeries:
    """Downsample a filtered series and attach x-axis labels.

    Fewer than two points cannot draw a line, so an empty chart is returned.
    """
    if len(points) < 2:
        return ChartSeries()

    result = downsample(points, max_points=max_points, max_labels=max_labels_for(timeframe))
    return ChartSeries(
        labels=axis_labels(result, lambda ts: format_axis_label(ts, timeframe)),
        values=result.values,
        timestamps=[p.timestamp for p in result.plot_points],
    )
