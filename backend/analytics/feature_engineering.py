"""
feature_engineering.py — Flow Statistics over a Window of Readings
===================================================================

Transforms a window of raw readings into the handful of statistics every
analysis rule is written against.

Input (per window of readings):
    flow_rate   — flow-units/min × 100
    pressure    — PSI × 100
    timestamp   — ms since epoch

Output (FlowFeatures):
    count          — readings that survived cleaning
    flow_mean      — average flow in the window
    flow_variance  — population variance of flow
    flow_std       — population standard deviation of flow
    flow_cv        — coefficient of variation (std / mean), None when the
                     mean is zero and the ratio is undefined
    pressure_mean  — average pressure in the window
    flow_min / flow_max — extremes of flow in the window
    latest_flow    — flow of the newest reading
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .models import Reading
from .preprocessing import prepare_readings

logger = logging.getLogger("analytics.feature_engineering")


@dataclass(frozen=True)
class FlowFeatures:
    count: int
    flow_mean: float
    flow_variance: float
    flow_std: float
    flow_cv: Optional[float]
    pressure_mean: float
    flow_min: float
    flow_max: float
    latest_flow: float


def coefficient_of_variation(std: float, mean: float) -> Optional[float]:
    """std / mean, or None when the mean is zero (ratio not evaluated)."""
    if mean == 0:
        return None
    return float(std / abs(mean))


def extract_features(readings: list[Reading]) -> Optional[FlowFeatures]:
    """
    Compute window statistics from a list of readings.

    Variance and stddev are population statistics (ddof=0), matching how the
    thresholds were calibrated.

    Args:
        readings: Reading records in any order.

    Returns:
        FlowFeatures, or None if no usable readings remain after cleaning.
    """
    df = prepare_readings(readings)
    if df.empty:
        logger.debug("No usable readings for feature extraction")
        return None

    flows = df["flow_rate"].to_numpy(dtype=np.float64)
    pressures = df["pressure"].to_numpy(dtype=np.float64)

    flow_mean = float(flows.mean())
    flow_variance = float(flows.var(ddof=0))
    flow_std = float(np.sqrt(flow_variance))

    features = FlowFeatures(
        count=len(df),
        flow_mean=flow_mean,
        flow_variance=flow_variance,
        flow_std=flow_std,
        flow_cv=coefficient_of_variation(flow_std, flow_mean),
        pressure_mean=float(pressures.mean()),
        flow_min=float(flows.min()),
        flow_max=float(flows.max()),
        latest_flow=float(flows[-1]),
    )

    logger.debug(f"Extracted features: {features}")
    return features
