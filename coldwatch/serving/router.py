"""API route definitions for the coldwatch service.

Endpoints:
    GET /health                        — Store reachability and newest prediction
    GET /sensors/latest                — Latest two readings and per-parameter change
    GET /sensors/{parameter}/series    — Filtered, downsampled chart with stats and trend
    GET /sensors/vibration             — Vibration stats over the newest rows
    GET /predictions/stats             — Prediction summary for one time range
    GET /predictions/daily             — Per-day prediction rollups
    GET /metrics                       — Prometheus exposition
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from coldwatch.cache.timeseries_store import TimeSeriesStore
from coldwatch.config import Settings
from coldwatch.data.schemas import SENSOR_COLUMNS, DateRange, PredictionStatsSummary
from coldwatch.predictions.service import PredictionService
from coldwatch.sensors.service import SensorService, SeriesView, VibrationView
from coldwatch.series.stats import reading_change
from coldwatch.serving.schemas import DailyResponse, HealthResponse, LatestSensorsResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def get_settings(request: Request) -> Settings:
    """Get the app settings from the request state."""
    return request.app.state.settings


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service is starting up.")
    return service


def get_snapshots(request: Request) -> TimeSeriesStore:
    return _service(request, "snapshots")


def get_sensor_service(request: Request) -> SensorService:
    return _service(request, "sensors")


def get_prediction_service(request: Request) -> PredictionService:
    return _service(request, "predictions")


# ──────────────────────────────────────────────
# GET /health
# ──────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
def health(predictions: PredictionService = Depends(get_prediction_service)) -> HealthResponse:
    """Health check endpoint."""
    status = predictions.check_status()
    return HealthResponse(
        status="healthy" if status.healthy else "degraded",
        store=status.status,
        last_prediction=predictions.last_prediction_time() if status.healthy else None,
        error=status.error,
    )


# ──────────────────────────────────────────────
# Sensors
# ──────────────────────────────────────────────


@router.get("/sensors/latest", response_model=LatestSensorsResponse)
async def latest_sensors(
    force_refresh: bool = False,
    snapshots: TimeSeriesStore = Depends(get_snapshots),
) -> LatestSensorsResponse:
    """Latest reading and the one before it, served from the snapshot cache."""
    result = await snapshots.aget(force_refresh=force_refresh)
    snapshot = result.snapshot
    changes = [
        reading_change(snapshot.current, snapshot.previous, parameter)
        for parameter in SENSOR_COLUMNS
        if parameter in snapshot.current
    ]
    return LatestSensorsResponse(
        snapshot=snapshot,
        changes=changes,
        from_cache=result.from_cache,
        error=result.error,
    )


@router.get("/sensors/vibration", response_model=VibrationView)
def vibration(sensors: SensorService = Depends(get_sensor_service)) -> VibrationView:
    """Overall and per-axis compressor vibration stats."""
    return sensors.vibration()


@router.get("/sensors/{parameter}/series", response_model=SeriesView)
def sensor_series(
    parameter: str,
    timeframe: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    sensors: SensorService = Depends(get_sensor_service),
    settings: Settings = Depends(get_settings),
) -> SeriesView:
    """Chart series for one parameter.

    ``start`` and ``end`` select a custom range and must be given together;
    otherwise ``timeframe`` picks a preset window ending now.
    """
    if (start is None) != (end is None):
        raise HTTPException(status_code=422, detail="start and end must be given together")

    timeframe = timeframe or settings.chart.default_timeframe
    try:
        date_range = DateRange(start=start, end=end) if start is not None else None
        return sensors.series(parameter, timeframe, date_range)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


# ──────────────────────────────────────────────
# Predictions
# ──────────────────────────────────────────────


@router.get("/predictions/stats", response_model=PredictionStatsSummary)
def prediction_stats(
    time_range: str = "present",
    predictions: PredictionService = Depends(get_prediction_service),
) -> PredictionStatsSummary:
    """Prediction summary for "present", "last7days" or "alltime"."""
    try:
        return predictions.stats(time_range)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.get("/predictions/daily", response_model=DailyResponse)
def prediction_daily(
    days: int | None = Query(default=None, ge=1, le=90),
    predictions: PredictionService = Depends(get_prediction_service),
    settings: Settings = Depends(get_settings),
) -> DailyResponse:
    """Per-day rollups for the last ``days`` days, most recent first."""
    result = predictions.daily(days or settings.daily_rollup_days)
    return DailyResponse(success=result.success, daily=result.daily, error=result.error)


# ──────────────────────────────────────────────
# GET /metrics
# ──────────────────────────────────────────────


@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
