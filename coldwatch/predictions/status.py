"""Three-tier equipment status from anomaly, failure probability and health index."""

from __future__ import annotations

from coldwatch.data.schemas import Status

CRITICAL_FAILURE_PROB = 0.7
WARNING_FAILURE_PROB = 0.3
CRITICAL_HEALTH_INDEX = 30.0
WARNING_HEALTH_INDEX = 60.0

# Share of anomalous predictions that makes a window count as anomalous
ANOMALY_RATIO_THRESHOLD = 0.3


def classify_status(is_anomaly: bool, failure_prob: float, health_index: float) -> Status:
    """critical > warning > normal, first matching tier wins."""
    if is_anomaly or failure_prob > CRITICAL_FAILURE_PROB or health_index < CRITICAL_HEALTH_INDEX:
        return "critical"
    if failure_prob > WARNING_FAILURE_PROB or health_index < WARNING_HEALTH_INDEX:
        return "warning"
    return "normal"


def window_is_anomalous(anomaly_count: int, total: int) -> bool:
    return anomaly_count > total * ANOMALY_RATIO_THRESHOLD
