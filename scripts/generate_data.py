"""Seed the coldwatch database with synthetic sensor and prediction rows.

Usage:
    python scripts/generate_data.py --days 7 --interval-min 5
    python scripts/generate_data.py --days 30 --no-predictions
"""

from __future__ import annotations

import argparse
import logging
from datetime import datetime, timedelta, timezone

import numpy as np
import pandas as pd
import psycopg2
from psycopg2.extras import execute_values

from coldwatch.config import load_settings
from coldwatch.data.schemas import SENSOR_COLUMNS

logger = logging.getLogger(__name__)

# (baseline, noise std) per column
BASELINES: dict[str, tuple[float, float]] = {
    "evaporator_coil_temperature": (-18.0, 0.8),
    "freezer_temperature": (-20.0, 0.5),
    "fridge_temperature": (4.0, 0.3),
    "air_temperature": (24.0, 1.0),
    "humidity": (55.0, 3.0),
    "compressor_vibration": (2.5, 0.2),
    "compressor_vibration_x": (1.4, 0.1),
    "compressor_vibration_y": (1.3, 0.1),
    "compressor_vibration_z": (1.5, 0.1),
    "compressor_current": (4.8, 0.2),
    "input_voltage": (230.0, 2.0),
    "gas_leakage_level": (12.0, 1.5),
    "power_consumption": (180.0, 8.0),
    "temperature_diff": (24.0, 0.6),
}

PARTS = ("compressor", "condenser fan", "evaporator", "door seal")


def sensor_frame(start: datetime, periods: int, interval_min: int, rng: np.random.Generator) -> pd.DataFrame:
    """Readings with noise, a daily temperature cycle and slow vibration wear."""
    index = pd.date_range(start, periods=periods, freq=f"{interval_min}min", tz="UTC")
    hours = index.hour.to_numpy() + index.minute.to_numpy() / 60
    daily = np.sin(2 * np.pi * hours / 24)
    wear = np.linspace(0.0, 1.0, periods)

    data = {"timestamp": index.to_pydatetime()}
    for column in SENSOR_COLUMNS:
        base, std = BASELINES[column]
        values = base + rng.normal(0.0, std, periods)
        if "temperature" in column:
            values = values + daily * std
        if column.startswith("compressor_vibration"):
            values = values + wear * base * 0.4
        data[column] = np.round(values, 3)
    return pd.DataFrame(data)


def prediction_frame(sensors: pd.DataFrame, every: int, rng: np.random.Generator) -> pd.DataFrame:
    """One prediction per ``every`` sensor rows, degrading with vibration."""
    sampled = sensors.iloc[::every]
    vibration = sampled["compressor_vibration"].to_numpy()
    risk = np.clip((vibration - 2.5) / 1.5 + rng.normal(0, 0.05, len(sampled)), 0.0, 1.0)

    ruls = []
    for r in risk:
        days_left = round(float((1 - r) * 120), 1)
        if r > 0.5:
            ruls.append(f"{days_left} days (Part at risk: {rng.choice(PARTS)})")
        else:
            ruls.append(str(days_left))

    return pd.DataFrame(
        {
            "timestamp": sampled["timestamp"].to_numpy(),
            "anomaly": risk > 0.7,
            "failure_prob": np.round(risk, 3),
            "health_index": np.round((1 - risk) * 100, 1),
            "rul": ruls,
        }
    )


def insert_frame(conn: psycopg2.extensions.connection, table: str, df: pd.DataFrame) -> None:
    columns = ", ".join(df.columns)
    rows = [tuple(r) for r in df.astype(object).itertuples(index=False, name=None)]
    with conn.cursor() as cur:
        execute_values(cur, f"INSERT INTO {table} ({columns}) VALUES %s", rows, page_size=500)
    logger.info("Inserted %d rows into %s", len(rows), table)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed synthetic coldwatch data")
    parser.add_argument("--days", type=int, default=7)
    parser.add_argument("--interval-min", type=int, default=5)
    parser.add_argument("--prediction-every", type=int, default=12, help="Sensor rows per prediction")
    parser.add_argument("--no-predictions", action="store_true")
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s — %(name)s — %(levelname)s — %(message)s",
    )

    rng = np.random.default_rng(args.seed)
    periods = args.days * 24 * 60 // args.interval_min
    start = datetime.now(timezone.utc) - timedelta(days=args.days)

    sensors = sensor_frame(start, periods, args.interval_min, rng)
    db = load_settings().database

    conn = psycopg2.connect(host=db.host, port=db.port, dbname=db.name, user=db.user, password=db.password)
    try:
        insert_frame(conn, db.sensor_table, sensors)
        if not args.no_predictions:
            insert_frame(conn, db.prediction_table, prediction_frame(sensors, args.prediction_every, rng))
        conn.commit()
    except Exception:
        conn.rollback()
        logger.exception("Seeding failed, rolled back")
        raise
    finally:
        conn.close()

    logger.info("Done: %d sensor rows over %d days.", len(sensors), args.days)


if __name__ == "__main__":
    main()
