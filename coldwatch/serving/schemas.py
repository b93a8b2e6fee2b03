"""Pydantic response models for the coldwatch API.

Sensor and prediction payloads reuse the pipeline models in
coldwatch.data.schemas; the models here wrap them per endpoint.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from coldwatch.data.schemas import DailySummary, ReadingChange, SensorSnapshot

# ──────────────────────────────────────────────
# Response schemas
# ──────────────────────────────────────────────


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status", examples=["healthy"])
    store: str = Field(description="Data store status", examples=["Connected"])
    last_prediction: datetime | None = Field(
        default=None,
        description="Timestamp of the newest prediction row",
    )
    error: str | None = None


class LatestSensorsResponse(BaseModel):
    """Latest two readings plus the change in each parameter."""

    snapshot: SensorSnapshot
    changes: list[ReadingChange] = Field(
        default_factory=list,
        description="One entry per parameter present in the current reading",
    )
    from_cache: bool = Field(description="Whether the snapshot was served without a query")
    error: str | None = None


class DailyResponse(BaseModel):
    """Per-day prediction rollups, most recent day first."""

    success: bool
    daily: list[DailySummary] = Field(default_factory=list)
    error: str | None = None


# ──────────────────────────────────────────────
# Error schemas
# ──────────────────────────────────────────────


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str = Field(description="Error description")
    error_type: str = Field(description="Error category")
