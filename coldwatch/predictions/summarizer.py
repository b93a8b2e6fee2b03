"""Summaries of prediction records for the predictions dashboard.

Two views are produced from the same records:
    point_stats   — one summary for "present", "last7days" or "alltime"
    daily_rollup  — one summary per UTC calendar day, most recent first

Both are recomputed from the records on every call.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Sequence

import pandas as pd

from coldwatch.data.schemas import DailySummary, PredictionRecord, PredictionStatsSummary, TimeRange
from coldwatch.predictions.parsing import most_common_part, numeric_rul, parse_part_at_risk
from coldwatch.predictions.status import classify_status, window_is_anomalous

logger = logging.getLogger(__name__)

TIME_RANGES: tuple[str, ...] = ("present", "last7days", "alltime")
LATEST_PREDICTIONS_SHOWN = 5
NO_DATA_MESSAGE = "No prediction data found for the specified time range"


def as_utc(ts: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def newest_first(records: Sequence[PredictionRecord]) -> list[PredictionRecord]:
    return sorted(records, key=lambda r: as_utc(r.timestamp), reverse=True)


def empty_summary(error: str, now: datetime | None = None) -> PredictionStatsSummary:
    """The zero-valued summary shown when there is nothing to summarize."""
    return PredictionStatsSummary(
        error=error,
        status="unknown",
        data_timestamp=now or datetime.now(timezone.utc),
    )


# ──────────────────────────────────────────────
# Point-in-time and windowed stats
# ──────────────────────────────────────────────


def _present_summary(record: PredictionRecord) -> PredictionStatsSummary:
    rul = numeric_rul(record.rul)
    return PredictionStatsSummary(
        total_predictions=1,
        anomaly_count=1 if record.anomaly else 0,
        anomaly_percentage=100.0 if record.anomaly else 0.0,
        failure_probability_avg=round(record.failure_prob, 2),
        health_index_avg=round(record.health_index, 1),
        rul_avg=round(rul, 1) if rul is not None else 0.0,
        part_at_risk=parse_part_at_risk(record.rul),
        status=classify_status(record.anomaly, record.failure_prob, record.health_index),
        latest_predictions=[record],
        data_timestamp=record.timestamp,
    )


def _window_summary(records: list[PredictionRecord], now: datetime) -> PredictionStatsSummary:
    total = len(records)
    anomaly_count = sum(1 for r in records if r.anomaly)
    failure_prob_avg = sum(r.failure_prob for r in records) / total
    health_index_avg = sum(r.health_index for r in records) / total

    ruls = [v for v in (numeric_rul(r.rul) for r in records) if v is not None]
    rul_avg = sum(ruls) / len(ruls) if ruls else 0.0

    return PredictionStatsSummary(
        total_predictions=total,
        anomaly_count=anomaly_count,
        anomaly_percentage=round(anomaly_count / total * 100, 1),
        failure_probability_avg=round(failure_prob_avg, 2),
        health_index_avg=round(health_index_avg, 1),
        rul_avg=round(rul_avg, 1),
        part_at_risk=most_common_part(parse_part_at_risk(r.rul) for r in records),
        status=classify_status(
            window_is_anomalous(anomaly_count, total),
            failure_prob_avg,
            health_index_avg,
        ),
        latest_predictions=records[:LATEST_PREDICTIONS_SHOWN],
        data_timestamp=now,
    )


def select_window(
    records: Sequence[PredictionRecord],
    time_range: TimeRange,
    now: datetime,
) -> list[PredictionRecord]:
    """Records that belong to a time range, newest first."""
    if time_range not in TIME_RANGES:
        raise ValueError(f"Unknown time range: {time_range}. Use one of {TIME_RANGES}.")

    ordered = newest_first(records)
    if time_range == "present":
        return ordered[:1]
    if time_range == "last7days":
        now_utc = as_utc(now)
        start = now_utc - timedelta(days=7)
        return [r for r in ordered if start <= as_utc(r.timestamp) <= now_utc]
    return ordered


def point_stats(
    records: Sequence[PredictionRecord],
    time_range: TimeRange = "present",
    now: datetime | None = None,
) -> PredictionStatsSummary:
    """Summarize predictions for "present", "last7days" or "alltime".

    "present" reports the newest record as-is; the windowed ranges average
    over every record in the window. No records gives the empty summary
    with status "unknown" and an error message.
    """
    now = now or datetime.now(timezone.utc)
    window = select_window(records, time_range, now)

    if not window:
        logger.info("No predictions for time range %s", time_range)
        return empty_summary(NO_DATA_MESSAGE, now)

    if time_range == "present":
        return _present_summary(window[0])
    return _window_summary(window, now)


# ──────────────────────────────────────────────
# Daily rollup
# ──────────────────────────────────────────────


def _records_frame(records: Sequence[PredictionRecord]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "date": [as_utc(r.timestamp).date() for r in records],
            "anomaly": [bool(r.anomaly) for r in records],
            "failure_prob": [r.failure_prob for r in records],
            "health_index": [r.health_index for r in records],
            "rul": [numeric_rul(r.rul) for r in records],
        }
    ).astype({"rul": "float64"})


def daily_rollup(records: Sequence[PredictionRecord], days: int = 5) -> list[DailySummary]:
    """Group predictions by UTC day and summarize each day.

    Returns at most ``days`` summaries, most recent day first. rul_avg
    only counts records whose RUL is numeric.
    """
    if days < 1:
        raise ValueError(f"days must be >= 1, got {days}")
    if not records:
        return []

    df = _records_frame(records)
    grouped = (
        df.groupby("date", sort=False)
        .agg(
            total=("anomaly", "size"),
            anomaly_count=("anomaly", "sum"),
            failure_prob_sum=("failure_prob", "sum"),
            health_index_sum=("health_index", "sum"),
            rul_avg=("rul", "mean"),
        )
        .sort_index(ascending=False)
        .head(days)
    )

    summaries = []
    for day, row in grouped.iterrows():
        total = int(row["total"])
        anomaly_count = int(row["anomaly_count"])
        failure_prob_avg = float(row["failure_prob_sum"]) / total
        health_index_avg = float(row["health_index_sum"]) / total
        rul_avg = 0.0 if pd.isna(row["rul_avg"]) else float(row["rul_avg"])

        summaries.append(
            DailySummary(
                date=day,
                total_predictions=total,
                anomaly_count=anomaly_count,
                anomaly_percentage=round(anomaly_count / total * 100, 1),
                failure_probability_avg=round(failure_prob_avg, 2),
                health_index_avg=round(health_index_avg, 1),
                rul_avg=round(rul_avg, 1),
                status=classify_status(
                    window_is_anomalous(anomaly_count, total),
                    failure_prob_avg,
                    health_index_avg,
                ),
            )
        )

    logger.debug("Rolled %d predictions into %d days", len(records), len(summaries))
    return summaries
