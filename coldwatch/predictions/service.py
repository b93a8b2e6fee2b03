"""Store-backed access to prediction summaries.

Issues the prediction queries and feeds the rows through the summarizer.
Query failures never propagate: callers get the empty summary (or an empty
list) with the error message attached, and a warning is logged.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from coldwatch.data.schemas import DailySummary, PredictionRecord, PredictionStatsSummary, TimeRange
from coldwatch.data.validate import parse_prediction_rows, parse_timestamp
from coldwatch.monitoring.metrics import record_fetch, set_prediction_status
from coldwatch.predictions.summarizer import TIME_RANGES, daily_rollup, empty_summary, point_stats
from coldwatch.store.base import DataStore, Query

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DailyResult:
    success: bool
    daily: list[DailySummary] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class StoreStatus:
    healthy: bool
    status: str
    error: str | None = None


class PredictionService:
    """Runs prediction queries against a DataStore and summarizes the rows."""

    def __init__(
        self,
        store: DataStore,
        table: str = "predictions",
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._table = table
        self._now = now

    def _query_for(self, time_range: TimeRange, now: datetime) -> Query:
        query = Query(self._table).order("timestamp", descending=True)
        if time_range == "present":
            return query.limit(1)
        if time_range == "last7days":
            return query.gte("timestamp", now - timedelta(days=7)).lte("timestamp", now)
        return query

    def _fetch(self, query: Query) -> list[PredictionRecord]:
        started = time.perf_counter()
        try:
            rows = self._store.select(query)
        except Exception:
            record_fetch("predictions", (time.perf_counter() - started) * 1000, ok=False)
            raise
        record_fetch("predictions", (time.perf_counter() - started) * 1000, ok=True)
        records, _ = parse_prediction_rows(rows)
        return records

    def stats(self, time_range: TimeRange = "present") -> PredictionStatsSummary:
        """Prediction statistics for one time range."""
        if time_range not in TIME_RANGES:
            raise ValueError(f"Unknown time range: {time_range}. Use one of {TIME_RANGES}.")

        now = self._now()
        try:
            records = self._fetch(self._query_for(time_range, now))
        except Exception as e:
            logger.warning("Error fetching prediction data for %s: %s", time_range, e)
            summary = empty_summary(f"Error fetching prediction data: {e}", now)
        else:
            summary = point_stats(records, time_range, now=now)

        set_prediction_status(time_range, summary.status)
        return summary

    def daily(self, days: int = 5) -> DailyResult:
        """Per-day rollups for the last ``days`` days, most recent first."""
        if days < 1:
            raise ValueError(f"days must be >= 1, got {days}")
        now = self._now()
        query = (
            Query(self._table)
            .gte("timestamp", now - timedelta(days=days))
            .lte("timestamp", now)
            .order("timestamp")
        )
        try:
            records = self._fetch(query)
        except Exception as e:
            logger.warning("Error fetching daily prediction data: %s", e)
            return DailyResult(success=False, error=str(e))

        if not records:
            return DailyResult(success=False, error="No data found for the specified time range")
        return DailyResult(success=True, daily=daily_rollup(records, days))

    def last_prediction_time(self) -> datetime | None:
        """Timestamp of the newest prediction; None if there are none or the query fails."""
        query = Query(self._table).select("timestamp").order("timestamp", descending=True).limit(1)
        try:
            rows = self._store.select(query)
        except Exception as e:
            logger.warning("Error getting last prediction time: %s", e)
            return None
        if not rows:
            return None
        return parse_timestamp(rows[0].get("timestamp"))

    def check_status(self) -> StoreStatus:
        """Probe the predictions table with a one-row query."""
        try:
            self._store.select(Query(self._table).select("timestamp").limit(1))
        except Exception as e:
            logger.warning("Data store connection error: %s", e)
            return StoreStatus(healthy=False, status="Error connecting to database", error=str(e))
        return StoreStatus(healthy=True, status="Connected")
