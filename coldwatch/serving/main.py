"""FastAPI application factory for the coldwatch service.

Usage:
    uvicorn coldwatch.serving.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coldwatch.cache.timeseries_store import TimeSeriesStore
from coldwatch.config import CONFIG_PATH, Settings, load_config
from coldwatch.predictions.service import PredictionService
from coldwatch.scheduling.refresh import build_scheduler
from coldwatch.sensors.service import SensorService
from coldwatch.serving.middleware import RequestLoggingMiddleware, TimingMiddleware
from coldwatch.serving.router import router
from coldwatch.store.base import StoreError
from coldwatch.store.postgres import PostgresStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: wire the store and services, start refresh jobs."""
    # Startup
    logger.info("Starting coldwatch service...")
    settings: Settings = app.state.settings
    db = settings.database

    store = PostgresStore(db)
    snapshots = TimeSeriesStore(
        store,
        table=db.sensor_table,
        ttl_ms=settings.cache.ttl_ms,
        debounce_ms=settings.cache.debounce_ms,
    )
    app.state.snapshots = snapshots
    app.state.sensors = SensorService(
        store,
        table=db.sensor_table,
        lookback_days=settings.chart.lookback_days,
        max_points=settings.chart.max_points,
    )
    app.state.predictions = PredictionService(store, table=db.prediction_table)

    try:
        snapshots.attach()
    except StoreError as e:
        logger.warning("Push updates unavailable: %s. Falling back to polling.", e)

    first = await snapshots.aget()
    if not first.ok:
        logger.warning("Initial sensor snapshot failed: %s", first.error)

    scheduler = build_scheduler(settings.refresh, snapshots, app.state.predictions)
    await scheduler.start()

    yield

    # Shutdown
    await scheduler.stop()
    store.close()
    logger.info("Shutting down coldwatch service.")


def create_app(config: dict | None = None) -> FastAPI:
    """FastAPI application factory."""
    config = config if config is not None else load_config(CONFIG_PATH)
    settings = Settings.from_dict(config)

    app = FastAPI(
        title="Coldwatch Refrigeration Monitoring API",
        description="Sensor time series, chart series and failure-prediction summaries",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.settings = settings

    # Configure logging
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s — %(name)s — %(levelname)s — %(message)s",
    )

    # CORS middleware
    cors_config = config.get("cors", {})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_config.get("allow_origins", ["*"]),
        allow_credentials=True,
        allow_methods=cors_config.get("allow_methods", ["GET"]),
        allow_headers=cors_config.get("allow_headers", ["*"]),
    )

    # Custom middleware
    middleware_config = config.get("middleware", {})
    if middleware_config.get("enable_timing", True):
        app.add_middleware(TimingMiddleware)
    if middleware_config.get("enable_request_logging", True):
        app.add_middleware(RequestLoggingMiddleware)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_type": type(exc).__name__},
        )

    app.include_router(router)

    return app


# Default app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn

    # Local development only
    api_config = load_config(CONFIG_PATH).get("api", {})

    uvicorn.run(
        "coldwatch.serving.main:app",
        host=api_config.get("host", "0.0.0.0"),
        port=int(api_config.get("port", 8000)),
        reload=True,
        log_level=api_config.get("log_level", "info").lower(),
    )
