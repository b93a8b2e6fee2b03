"""Prometheus metrics for the coldwatch pipeline.

Exposes:
  - Snapshot cache hits/misses
  - Store fetch failures and latency
  - Push updates applied vs. dropped by the debounce window
  - Latest prediction status per time range
  - API request latency per route template
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────
# Counters
# ──────────────────────────────────────────────

CACHE_REQUESTS = Counter(
    "coldwatch_snapshot_cache_requests_total",
    "Snapshot cache lookups by result",
    ["result"],
)

STORE_FAILURES = Counter(
    "coldwatch_store_failures_total",
    "Data store queries that failed",
    ["source"],
)

PUSH_UPDATES = Counter(
    "coldwatch_push_updates_total",
    "Real-time sensor inserts received, by outcome",
    ["outcome"],
)

# ──────────────────────────────────────────────
# Histograms
# ──────────────────────────────────────────────

FETCH_LATENCY = Histogram(
    "coldwatch_store_fetch_latency_ms",
    "Data store query latency in milliseconds",
    ["source"],
    buckets=[1, 2, 5, 10, 20, 50, 100, 200, 500, 1000, 5000],
)

REQUEST_LATENCY = Histogram(
    "coldwatch_http_request_latency_ms",
    "API request latency in milliseconds",
    ["route", "status"],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000],
)

# ──────────────────────────────────────────────
# Gauges
# ──────────────────────────────────────────────

_STATUS_LEVELS = {"unknown": -1, "normal": 0, "warning": 1, "critical": 2}

PREDICTION_STATUS = Gauge(
    "coldwatch_prediction_status",
    "Latest summarized status (-1 unknown, 0 normal, 1 warning, 2 critical)",
    ["time_range"],
)


# ──────────────────────────────────────────────
# Helper functions
# ──────────────────────────────────────────────


def record_cache_lookup(hit: bool) -> None:
    CACHE_REQUESTS.labels(result="hit" if hit else "miss").inc()


def record_fetch(source: str, latency_ms: float, ok: bool) -> None:
    """Record one store query.

    Args:
        source: Logical caller (e.g. "snapshot", "predictions").
        latency_ms: Wall time of the query in milliseconds.
        ok: Whether the query succeeded.
    """
    FETCH_LATENCY.labels(source=source).observe(latency_ms)
    if not ok:
        STORE_FAILURES.labels(source=source).inc()


def record_push(applied: bool) -> None:
    PUSH_UPDATES.labels(outcome="applied" if applied else "dropped").inc()


def set_prediction_status(time_range: str, status: str) -> None:
    PREDICTION_STATUS.labels(time_range=time_range).set(_STATUS_LEVELS.get(status, -1))


def record_request(route: str, status_code: int, latency_ms: float) -> None:
    REQUEST_LATENCY.labels(route=route, status=str(status_code)).observe(latency_ms)
