"""Configuration loading for the coldwatch pipeline and API.

Values live in configs/coldwatch.yaml. Strings may reference environment
variables with ${VAR:-default}, resolved at load time.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONFIG_PATH = PROJECT_ROOT / "configs" / "coldwatch.yaml"

# Regex to match ${VAR:-default} patterns in YAML values
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-(.*?))?\}")


def resolve_env_vars(obj: dict | list | str | int | float | bool | None) -> dict | list | str | int | float | bool | None:
    """Recursively resolve ${VAR:-default} patterns in a loaded YAML config.

    Works on strings, dicts, and lists. Non-string values pass through unchanged.
    """
    if isinstance(obj, str):
        def _replace(match: re.Match) -> str:
            env_key = match.group(1)
            default_val = match.group(2) if match.group(2) is not None else ""
            return os.environ.get(env_key, default_val)
        return _ENV_VAR_PATTERN.sub(_replace, obj)
    elif isinstance(obj, dict):
        return {k: resolve_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [resolve_env_vars(item) for item in obj]
    return obj


def load_config(config_path: Path = CONFIG_PATH) -> dict:
    """Load the YAML config with environment variable resolution."""
    with open(config_path) as f:
        config = yaml.safe_load(f) or {}
    return resolve_env_vars(config)


# ──────────────────────────────────────────────
# Typed settings
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class CacheSettings:
    ttl_ms: int = 10_000
    debounce_ms: int = 500


@dataclass(frozen=True)
class ChartSettings:
    max_points: int = 100
    lookback_days: int = 30
    default_timeframe: str = "1w"


@dataclass(frozen=True)
class RefreshSettings:
    cache_check_s: float = 10.0
    sensor_refresh_s: float = 30.0
    prediction_refresh_s: float = 60.0


@dataclass(frozen=True)
class DatabaseSettings:
    host: str = "localhost"
    port: int = 5432
    name: str = "coldwatch"
    user: str = "coldwatch"
    password: str = "changeme_in_prod"
    sensor_table: str = "sensor_data"
    prediction_table: str = "predictions"


@dataclass(frozen=True)
class Settings:
    cache: CacheSettings = field(default_factory=CacheSettings)
    chart: ChartSettings = field(default_factory=ChartSettings)
    refresh: RefreshSettings = field(default_factory=RefreshSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    daily_rollup_days: int = 5
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, config: dict) -> Settings:
        """Build settings from a loaded config dict; missing keys keep defaults."""
        cache = config.get("cache", {})
        chart = config.get("chart", {})
        refresh = config.get("refresh", {})
        db = config.get("database", {})
        predictions = config.get("predictions", {})
        api = config.get("api", {})

        return cls(
            cache=CacheSettings(
                ttl_ms=int(cache.get("ttl_ms", CacheSettings.ttl_ms)),
                debounce_ms=int(cache.get("debounce_ms", CacheSettings.debounce_ms)),
            ),
            chart=ChartSettings(
                max_points=int(chart.get("max_points", ChartSettings.max_points)),
                lookback_days=int(chart.get("lookback_days", ChartSettings.lookback_days)),
                default_timeframe=str(chart.get("default_timeframe", ChartSettings.default_timeframe)),
            ),
            refresh=RefreshSettings(
                cache_check_s=float(refresh.get("cache_check_s", RefreshSettings.cache_check_s)),
                sensor_refresh_s=float(refresh.get("sensor_refresh_s", RefreshSettings.sensor_refresh_s)),
                prediction_refresh_s=float(
                    refresh.get("prediction_refresh_s", RefreshSettings.prediction_refresh_s)
                ),
            ),
            database=DatabaseSettings(
                host=str(db.get("host", DatabaseSettings.host)),
                port=int(db.get("port", DatabaseSettings.port)),
                name=str(db.get("name", DatabaseSettings.name)),
                user=str(db.get("user", DatabaseSettings.user)),
                password=str(db.get("password", DatabaseSettings.password)),
                sensor_table=str(db.get("sensor_table", DatabaseSettings.sensor_table)),
                prediction_table=str(db.get("prediction_table", DatabaseSettings.prediction_table)),
            ),
            daily_rollup_days=int(predictions.get("daily_rollup_days", 5)),
            log_level=str(api.get("log_level", "INFO")).upper(),
        )


def load_settings(config_path: Path = CONFIG_PATH) -> Settings:
    """Load settings from YAML, falling back to defaults if the file is absent."""
    if not config_path.exists():
        return Settings()
    return Settings.from_dict(load_config(config_path))
