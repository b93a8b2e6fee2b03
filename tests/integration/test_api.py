"""Integration tests for the coldwatch FastAPI API.

Tests hit real FastAPI endpoints via httpx async test client. The services
are real; only the data store underneath them is mocked.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from coldwatch.cache.timeseries_store import TimeSeriesStore
from coldwatch.predictions.service import PredictionService
from coldwatch.sensors.service import SensorService
from coldwatch.serving.main import create_app
from coldwatch.store.base import StoreError

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)

TEST_CONFIG = {
    "api": {"log_level": "WARNING"},
    "cache": {"ttl_ms": 10000, "debounce_ms": 500},
    "predictions": {"daily_rollup_days": 5},
    "middleware": {"enable_timing": True, "enable_request_logging": True},
}

# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────


class FakeStore:
    """Serves canned rows per table; optionally fails every query."""

    def __init__(self, tables: dict[str, list[dict]], fail: bool = False) -> None:
        self.tables = tables
        self.fail = fail
        self.queries = []
        self.subscribe = MagicMock()

    def select(self, query) -> list[dict]:
        self.queries.append(query)
        if self.fail:
            raise StoreError("connection refused")
        rows = [dict(r) for r in self.tables.get(query.table, [])]
        if query.order_by:
            rows.sort(key=lambda r: r[query.order_by], reverse=query.descending)
        if query.row_limit is not None:
            rows = rows[: query.row_limit]
        return rows

    def close(self) -> None:
        pass


def _sensor_rows() -> list[dict]:
    start = NOW - timedelta(hours=47)
    return [
        {
            "timestamp": start + timedelta(hours=i),
            "fridge_temperature": 4.0 + i * 0.01,
            "compressor_vibration": 2.0 + (i % 3) * 0.5,
            "compressor_vibration_x": 1.0,
            "compressor_vibration_y": 1.1,
            "compressor_vibration_z": 1.2,
        }
        for i in range(48)
    ]


def _prediction_rows() -> list[dict]:
    return [
        {
            "timestamp": NOW - timedelta(hours=h),
            "anomaly": h == 1,
            "failure_prob": 0.2,
            "health_index": 80.0,
            "rul": "90 (Part at risk: condenser fan)" if h == 1 else "120",
        }
        for h in (1, 5, 30)
    ]


def _build_test_app(store: FakeStore) -> FastAPI:
    """Build the real app and wire services by hand (ASGITransport skips lifespan)."""
    app = create_app(TEST_CONFIG)
    app.state.snapshots = TimeSeriesStore(store)
    app.state.sensors = SensorService(store, now=lambda: NOW)
    app.state.predictions = PredictionService(store, now=lambda: NOW)
    return app


# ──────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────


@pytest.fixture
def store() -> FakeStore:
    return FakeStore({"sensor_data": _sensor_rows(), "predictions": _prediction_rows()})


@pytest.fixture
async def client(store: FakeStore) -> AsyncClient:
    transport = ASGITransport(app=_build_test_app(store))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def client_store_down() -> AsyncClient:
    transport = ASGITransport(app=_build_test_app(FakeStore({}, fail=True)))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ──────────────────────────────────────────────
# GET /health
# ──────────────────────────────────────────────


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_health_when_store_reachable(self, client: AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["store"] == "Connected"
        assert body["last_prediction"].startswith("2024-03-10T11:00:00")

    @pytest.mark.asyncio
    async def test_health_when_store_down(self, client_store_down: AsyncClient) -> None:
        resp = await client_store_down.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "degraded"
        assert body["store"] == "Error connecting to database"
        assert body["last_prediction"] is None

    @pytest.mark.asyncio
    async def test_services_missing_gives_503(self) -> None:
        app = create_app(TEST_CONFIG)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            resp = await ac.get("/health")
        assert resp.status_code == 503


# ──────────────────────────────────────────────
# GET /sensors/latest
# ──────────────────────────────────────────────


class TestLatestSensors:
    @pytest.mark.asyncio
    async def test_latest_snapshot_and_changes(self, client: AsyncClient) -> None:
        resp = await client.get("/sensors/latest")
        assert resp.status_code == 200
        body = resp.json()

        assert body["from_cache"] is False
        assert body["snapshot"]["current"]["fridge_temperature"] == pytest.approx(4.47)
        assert body["snapshot"]["previous"]["fridge_temperature"] == pytest.approx(4.46)

        changes = {c["parameter"]: c for c in body["changes"]}
        assert changes["fridge_temperature"]["direction"] == "up"
        assert changes["fridge_temperature"]["improving"] is True
        assert changes["compressor_vibration_x"]["direction"] == "stable"

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, client: AsyncClient, store: FakeStore) -> None:
        await client.get("/sensors/latest")
        resp = await client.get("/sensors/latest")
        assert resp.json()["from_cache"] is True
        assert len(store.queries) == 1

    @pytest.mark.asyncio
    async def test_force_refresh(self, client: AsyncClient, store: FakeStore) -> None:
        await client.get("/sensors/latest")
        resp = await client.get("/sensors/latest", params={"force_refresh": "true"})
        assert resp.json()["from_cache"] is False
        assert len(store.queries) == 2

    @pytest.mark.asyncio
    async def test_store_down_reports_error(self, client_store_down: AsyncClient) -> None:
        resp = await client_store_down.get("/sensors/latest")
        assert resp.status_code == 200
        body = resp.json()
        assert "connection refused" in body["error"]
        assert body["snapshot"]["current"] == {}


# ──────────────────────────────────────────────
# GET /sensors/{parameter}/series, /sensors/vibration
# ──────────────────────────────────────────────


class TestSensorSeries:
    @pytest.mark.asyncio
    async def test_series_for_timeframe(self, client: AsyncClient) -> None:
        resp = await client.get("/sensors/fridge_temperature/series", params={"timeframe": "1d"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["parameter"] == "fridge_temperature"
        assert body["unit"] == "°C"
        assert body["point_count"] == 37
        assert len(body["chart"]["labels"]) == len(body["chart"]["values"])
        assert body["stats"]["count"] == 37
        assert body["trend"]["is_positive"] is True

    @pytest.mark.asyncio
    async def test_series_custom_range(self, client: AsyncClient) -> None:
        resp = await client.get(
            "/sensors/fridge_temperature/series",
            params={"start": "2024-03-10T00:00:00Z", "end": "2024-03-10T06:00:00Z"},
        )
        assert resp.status_code == 200
        assert resp.json()["point_count"] == 13

    @pytest.mark.asyncio
    async def test_series_mixed_timezone_bounds(self, client: AsyncClient) -> None:
        resp = await client.get(
            "/sensors/fridge_temperature/series",
            params={"start": "2024-03-09T00:00:00Z", "end": "2024-03-10T00:00:00"},
        )
        assert resp.status_code == 200
        assert resp.json()["point_count"] == 37

    @pytest.mark.asyncio
    async def test_series_mixed_timezone_bounds_out_of_order_422(self, client: AsyncClient) -> None:
        resp = await client.get(
            "/sensors/fridge_temperature/series",
            params={"start": "2024-03-11T00:00:00Z", "end": "2024-03-10T00:00:00"},
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_default_timeframe(self, client: AsyncClient) -> None:
        resp = await client.get("/sensors/humidity/series")
        assert resp.status_code == 200
        assert resp.json()["timeframe"] == "1w"
        assert resp.json()["point_count"] == 0

    @pytest.mark.asyncio
    async def test_unknown_parameter_422(self, client: AsyncClient) -> None:
        resp = await client.get("/sensors/door_angle/series")
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_timeframe_422(self, client: AsyncClient) -> None:
        resp = await client.get("/sensors/humidity/series", params={"timeframe": "5y"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_start_without_end_422(self, client: AsyncClient) -> None:
        resp = await client.get("/sensors/humidity/series", params={"start": "2024-03-10T00:00:00Z"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_start_after_end_422(self, client: AsyncClient) -> None:
        resp = await client.get(
            "/sensors/humidity/series",
            params={"start": "2024-03-10T00:00:00Z", "end": "2024-03-09T00:00:00Z"},
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_vibration(self, client: AsyncClient) -> None:
        resp = await client.get("/sensors/vibration")
        assert resp.status_code == 200
        body = resp.json()
        assert body["rows"] == 48
        assert body["components"]["compressor_vibration_z"]["average"] == 1.2
        assert body["components"]["compressor_vibration"]["max"] == 3.0


# ──────────────────────────────────────────────
# GET /predictions/*
# ──────────────────────────────────────────────


class TestPredictions:
    @pytest.mark.asyncio
    async def test_present(self, client: AsyncClient) -> None:
        resp = await client.get("/predictions/stats")
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_predictions"] == 1
        assert body["status"] == "critical"
        assert body["part_at_risk"] == "condenser fan"

    @pytest.mark.asyncio
    async def test_last7days(self, client: AsyncClient) -> None:
        resp = await client.get("/predictions/stats", params={"time_range": "last7days"})
        body = resp.json()
        assert body["total_predictions"] == 3
        assert body["anomaly_percentage"] == 33.3
        assert body["rul_avg"] == 120.0

    @pytest.mark.asyncio
    async def test_unknown_time_range_422(self, client: AsyncClient) -> None:
        resp = await client.get("/predictions/stats", params={"time_range": "forever"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_store_down_empty_summary(self, client_store_down: AsyncClient) -> None:
        resp = await client_store_down.get("/predictions/stats", params={"time_range": "alltime"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "unknown"
        assert body["total_predictions"] == 0
        assert body["error"]

    @pytest.mark.asyncio
    async def test_daily(self, client: AsyncClient) -> None:
        resp = await client.get("/predictions/daily")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert [d["date"] for d in body["daily"]] == ["2024-03-10", "2024-03-09"]
        assert [d["total_predictions"] for d in body["daily"]] == [2, 1]

    @pytest.mark.asyncio
    async def test_daily_days_validated(self, client: AsyncClient) -> None:
        resp = await client.get("/predictions/daily", params={"days": 0})
        assert resp.status_code == 422


# ──────────────────────────────────────────────
# GET /metrics, middleware
# ──────────────────────────────────────────────


class TestMetricsAndMiddleware:
    @pytest.mark.asyncio
    async def test_metrics_exposition(self, client: AsyncClient) -> None:
        await client.get("/sensors/latest")
        resp = await client.get("/metrics")
        assert resp.status_code == 200
        assert "coldwatch_snapshot_cache_requests_total" in resp.text

    @pytest.mark.asyncio
    async def test_timing_headers(self, client: AsyncClient) -> None:
        resp = await client.get("/predictions/stats")
        assert "x-process-time-ms" in resp.headers
        float(resp.headers["x-process-time-ms"])
        assert len(resp.headers["x-request-id"]) == 8

    @pytest.mark.asyncio
    async def test_request_latency_recorded_per_route_template(self, client: AsyncClient) -> None:
        await client.get("/sensors/humidity/series", params={"timeframe": "1d"})
        resp = await client.get("/metrics")
        assert 'route="/sensors/{parameter}/series"' in resp.text
        assert 'route="/sensors/humidity/series"' not in resp.text

    @pytest.mark.asyncio
    async def test_incoming_request_id_reused(self, client: AsyncClient) -> None:
        resp = await client.get("/health", headers={"X-Request-ID": "trace-42"})
        assert resp.headers["x-request-id"] == "trace-42"

    @pytest.mark.asyncio
    async def test_404_for_unknown_endpoint(self, client: AsyncClient) -> None:
        resp = await client.get("/unknown")
        assert resp.status_code == 404
