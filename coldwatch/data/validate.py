"""Row-level validation for data coming out of the store.

Malformed samples (missing timestamp, missing or non-numeric value) are
excluded before anything is aggregated. Rejections are counted in a
RowReport so callers can log how much was dropped.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Mapping

import pandas as pd
from pydantic import ValidationError

from coldwatch.data.schemas import SENSOR_COLUMNS, PredictionRecord

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Report
# ──────────────────────────────────────────────


@dataclass
class RowReport:
    """Counts accepted and rejected rows for one validation pass."""

    accepted: int = 0
    rejected: int = 0
    reasons: list[str] = field(default_factory=list)

    def reject(self, reason: str) -> None:
        self.rejected += 1
        # Keep the first few for diagnostics only
        if len(self.reasons) < 5:
            self.reasons.append(reason)

    def log(self, what: str) -> None:
        if self.rejected:
            logger.debug(
                "%s: accepted %d, rejected %d (e.g. %s)",
                what,
                self.accepted,
                self.rejected,
                self.reasons[0],
            )


# ──────────────────────────────────────────────
# Scalars
# ──────────────────────────────────────────────


def coerce_value(raw: object) -> float | None:
    """Return raw as a finite float, or None if it is absent or not numeric."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    return value if math.isfinite(value) else None


def parse_timestamp(raw: object) -> datetime | None:
    """Parse a datetime or ISO-8601 string. Anything else yields None."""
    if isinstance(raw, datetime):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return None
    ts = pd.to_datetime(raw, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.to_pydatetime()


# ──────────────────────────────────────────────
# Sensor rows
# ──────────────────────────────────────────────


def normalize_sensor_row(row: Mapping[str, object]) -> tuple[datetime | None, dict[str, float | None]]:
    """Split a sensor table row into its timestamp and parameter values.

    Only known parameters present in the row are kept; unusable values are None.
    """
    values = {col: coerce_value(row.get(col)) for col in SENSOR_COLUMNS if col in row}
    return parse_timestamp(row.get("timestamp")), values


# ──────────────────────────────────────────────
# Prediction rows
# ──────────────────────────────────────────────


def parse_prediction_rows(rows: Iterable[Mapping[str, object]]) -> tuple[list[PredictionRecord], RowReport]:
    """Validate prediction rows against PredictionRecord, skipping bad ones."""
    records: list[PredictionRecord] = []
    report = RowReport()

    for idx, row in enumerate(rows):
        try:
            records.append(PredictionRecord.model_validate(dict(row)))
            report.accepted += 1
        except ValidationError as e:
            report.reject(f"row {idx}: {e.errors()[0]['msg']}")

    report.log("prediction rows")
    return records, report
