"""
comparison.py — Cross-Sensor Flow Comparison
=============================================

Distinguishes a shared upstream problem (low supply tank, main supply
issue, scheduled maintenance) from a fault in one pipe.

A drop in flow on a single sensor looks like a leak.  The same drop on
almost every sensor at once is far more likely to be supply-side, and the
per-sensor leak signals should then be treated with lower confidence.

Rules:
    system-wide  — more than 70% of sensors run below half of their
                   reference flow.  The reference is the sensor's learned
                   baseline for the current hour/weekday when one with
                   enough samples exists, otherwise the cross-sensor mean.
    localized    — sensors whose mean flow differs from the cross-sensor
                   mean by more than 2 stddevs.
"""

import logging
from typing import Callable

import numpy as np

from . import config
from .models import ComparisonResult, FlowAggregate
from .store import DataStore, StoreTimeoutError
from .utils import now_ms, time_bucket

logger = logging.getLogger("analytics.comparison")

SYSTEM_WIDE_DIAGNOSIS = (
    "System-wide low flow detected. Possible causes: low water tank level, "
    "main supply issue, or scheduled maintenance."
)
INSUFFICIENT_DIAGNOSIS = "Insufficient data for comparison"
NORMAL_DIAGNOSIS = "All sensors operating within normal parameters."


class CrossSensorComparator:
    """
    Compares recent mean flow across all sensors.

    Attributes:
        store: DataStore providing aggregated flow and pattern buckets.
        window_ms: Aggregation window.
        clock: Callable returning the current time in ms.
    """

    def __init__(self, store: DataStore, window_ms: int = None,
                 clock: Callable[[], int] = None):
        self.store = store
        self.window_ms = window_ms or config.COMPARISON_WINDOW_MS
        self.clock = clock or now_ms

    def _reference_flow(self, aggregate: FlowAggregate, overall_mean: float,
                        hour: int, weekday: int) -> float:
        try:
            pattern = self.store.get_pattern_bucket(aggregate.sensor_id, hour, weekday)
        except StoreTimeoutError:
            pattern = None
        if pattern is not None and pattern.sample_count >= config.MIN_PATTERN_SAMPLES:
            return float(pattern.avg_flow_rate)
        return overall_mean

    def compare_across_pipes(self) -> ComparisonResult:
        """
        Decide whether recent flow behaviour is system-wide or localized.

        Returns:
            ComparisonResult with the verdict, affected sensor ids and a
            fixed diagnosis text.

        Raises:
            StoreUnavailableError: If the datastore cannot be reached.
        """
        now = self.clock()
        try:
            aggregates = self.store.get_aggregated_flow(self.window_ms, now)
        except StoreTimeoutError:
            logger.warning("Aggregated flow query timed out")
            aggregates = []

        if len(aggregates) < 2:
            return ComparisonResult(
                is_system_wide_issue=False,
                affected_sensors=[],
                diagnosis=INSUFFICIENT_DIAGNOSIS,
            )

        flows = np.array([a.avg_flow for a in aggregates], dtype=np.float64)
        overall_mean = float(flows.mean())
        overall_std = float(flows.std(ddof=0))

        hour, weekday = time_bucket(now)
        low_flow = [
            a for a in aggregates
            if a.avg_flow < config.LOW_FLOW_RATIO *
            self._reference_flow(a, overall_mean, hour, weekday)
        ]

        if len(low_flow) > len(aggregates) * config.SYSTEM_WIDE_FRACTION:
            logger.warning(f"System-wide low flow: {len(low_flow)}/"
                           f"{len(aggregates)} sensors below reference")
            return ComparisonResult(
                is_system_wide_issue=True,
                affected_sensors=[a.sensor_id for a in aggregates],
                diagnosis=SYSTEM_WIDE_DIAGNOSIS,
            )

        outliers = [
            a.sensor_id for a in aggregates
            if abs(a.avg_flow - overall_mean) >
            config.OUTLIER_STDDEV_MULTIPLIER * overall_std
        ]

        if outliers:
            logger.info(f"Localized flow anomaly on sensors {outliers}")
            return ComparisonResult(
                is_system_wide_issue=False,
                affected_sensors=outliers,
                diagnosis=(f"Localized flow anomaly detected in {len(outliers)} "
                           "sensor(s). Possible leak or blockage in specific "
                           "pipe sections."),
            )

        return ComparisonResult(
            is_system_wide_issue=False,
            affected_sensors=[],
            diagnosis=NORMAL_DIAGNOSIS,
        )
