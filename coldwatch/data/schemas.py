"""Pydantic schemas for sensor rows, prediction records and derived summaries.

Sensor and prediction rows arrive from the data store as plain dicts. These
models define what a well-formed row looks like and the shape of every
structure the pipeline hands back to callers.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ──────────────────────────────────────────────
# Sensor parameters
# ──────────────────────────────────────────────

SENSOR_PARAMETERS: tuple[str, ...] = (
    "evaporator_coil_temperature",
    "freezer_temperature",
    "fridge_temperature",
    "air_temperature",
    "humidity",
    "compressor_vibration",
    "compressor_current",
    "input_voltage",
    "gas_leakage_level",
    "power_consumption",
    "temperature_diff",
)

VIBRATION_AXES: tuple[str, ...] = (
    "compressor_vibration_x",
    "compressor_vibration_y",
    "compressor_vibration_z",
)

SENSOR_COLUMNS: tuple[str, ...] = SENSOR_PARAMETERS + VIBRATION_AXES

SENSOR_UNITS: dict[str, str] = {
    "evaporator_coil_temperature": "°C",
    "freezer_temperature": "°C",
    "fridge_temperature": "°C",
    "air_temperature": "°C",
    "humidity": "%",
    "compressor_vibration": "mm/s",
    "compressor_vibration_x": "mm/s",
    "compressor_vibration_y": "mm/s",
    "compressor_vibration_z": "mm/s",
    "compressor_current": "A",
    "input_voltage": "V",
    "power_consumption": "W",
    "gas_leakage_level": "ppm",
    "temperature_diff": "°C",
}

# Lower readings are the healthy direction for these
DECREASING_IS_BETTER: frozenset[str] = frozenset(
    {"compressor_vibration", "gas_leakage_level", "power_consumption"}
)

CalendarDay = date

Status = Literal["critical", "warning", "normal", "unknown"]
TimeRange = Literal["present", "last7days", "alltime"]


# ──────────────────────────────────────────────
# Sensor data
# ──────────────────────────────────────────────


class SensorSample(BaseModel):
    """One parameter reading taken from a sensor row."""

    timestamp: datetime
    parameter: str = Field(description="One of SENSOR_COLUMNS")
    value: float | None = Field(default=None, description="Finite reading, or None if absent")

    @field_validator("parameter")
    @classmethod
    def validate_parameter(cls, v: str) -> str:
        if v not in SENSOR_COLUMNS:
            raise ValueError(f"Unknown sensor parameter: {v}")
        return v

    @field_validator("value")
    @classmethod
    def drop_non_finite(cls, v: float | None) -> float | None:
        if v is not None and not math.isfinite(v):
            return None
        return v


class SensorSnapshot(BaseModel):
    """The most recent sensor reading and the one before it."""

    model_config = ConfigDict(frozen=True)

    current: dict[str, float | None] = Field(default_factory=dict)
    previous: dict[str, float | None] = Field(default_factory=dict)
    current_timestamp: datetime | None = None
    previous_timestamp: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not self.current


class TimeSeriesPoint(BaseModel):
    """A single (timestamp, value) sample of one parameter."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    value: float


class DateRange(BaseModel):
    """Inclusive date range selected for a chart.

    When only one bound carries a timezone, the naive bound is read in it.
    """

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_order(self) -> DateRange:
        if self.start.tzinfo is None and self.end.tzinfo is not None:
            self.start = self.start.replace(tzinfo=self.end.tzinfo)
        elif self.end.tzinfo is None and self.start.tzinfo is not None:
            self.end = self.end.replace(tzinfo=self.start.tzinfo)
        if self.start > self.end:
            raise ValueError(f"start ({self.start}) must not be after end ({self.end})")
        return self


# ──────────────────────────────────────────────
# Predictions
# ──────────────────────────────────────────────


class PredictionRecord(BaseModel):
    """A row of the predictions table, as written by the ML service."""

    timestamp: datetime
    anomaly: bool
    failure_prob: float = Field(ge=0.0, le=1.0)
    health_index: float = Field(ge=0.0, le=100.0)
    rul: float | str | None = Field(
        default=None,
        description="Remaining useful life; may carry a '(Part at risk: X)' note",
    )


# ──────────────────────────────────────────────
# Derived summaries
# ──────────────────────────────────────────────


class AggregateStats(BaseModel):
    """Average/max/min of a series. count == 0 means there was no data."""

    model_config = ConfigDict(frozen=True)

    average: float = 0.0
    max: float = 0.0
    min: float = 0.0
    count: int = Field(default=0, ge=0)


class Trend(BaseModel):
    """Change between the first and last value of a series."""

    model_config = ConfigDict(frozen=True)

    value: float = 0.0
    is_positive: bool = True
    absolute_change: float = 0.0


class ReadingChange(BaseModel):
    """Difference between the current and previous reading of one parameter."""

    model_config = ConfigDict(frozen=True)

    parameter: str
    difference: float
    direction: Literal["up", "down", "stable"]
    improving: bool | None = Field(
        default=None,
        description="None when stable; otherwise whether the move is in the healthy direction",
    )


class PredictionStatsSummary(BaseModel):
    """Prediction statistics for one time range."""

    model_config = ConfigDict(frozen=True)

    total_predictions: int = Field(default=0, ge=0)
    anomaly_count: int = Field(default=0, ge=0)
    anomaly_percentage: float = 0.0
    failure_probability_avg: float = 0.0
    health_index_avg: float = 0.0
    rul_avg: float = 0.0
    part_at_risk: str = "unknown"
    status: Status = "unknown"
    latest_predictions: list[PredictionRecord] = Field(default_factory=list)
    data_timestamp: datetime | None = None
    error: str | None = None


class DailySummary(BaseModel):
    """Rollup of all predictions made on one UTC calendar day."""

    model_config = ConfigDict(frozen=True)

    date: CalendarDay
    total_predictions: int = Field(ge=0)
    anomaly_count: int = Field(ge=0)
    anomaly_percentage: float
    failure_probability_avg: float
    health_index_avg: float
    rul_avg: float
    status: Status
