"""
anomaly.py — Live Reading vs. Learned Baseline
===============================================

Compares a current flow value against the learned FlowPattern bucket for the
current local hour and weekday.

Cold-start policy: a bucket that is missing or has fewer than
config.MIN_PATTERN_SAMPLES samples never flags an anomaly.  Until the
learner has seen enough history, "no opinion" is the only safe answer.
"""

import logging
from typing import Callable, Optional

from . import config
from .models import AnomalyCheck
from .store import DataStore, StoreTimeoutError
from .utils import now_ms, time_bucket

logger = logging.getLogger("analytics.anomaly")


class AnomalyChecker:
    """
    Flags flow values outside avg ± 2·stddev of the current time bucket.

    Attributes:
        store: DataStore providing pattern buckets.
        clock: Callable returning the current time in ms.
    """

    def __init__(self, store: DataStore, clock: Callable[[], int] = None):
        self.store = store
        self.clock = clock or now_ms

    def check_anomaly(self, sensor_id: int, current_flow: float,
                      now: Optional[int] = None) -> AnomalyCheck:
        """
        Check one flow value against the sensor's baseline.

        Args:
            sensor_id: Sensor to check.
            current_flow: Flow value in scaled units.
            now: Reference time in ms.  Defaults to the checker's clock.

        Returns:
            AnomalyCheck.  expected_range is None when there is no usable
            baseline.
        """
        hour, weekday = time_bucket(now if now is not None else self.clock())

        try:
            pattern = self.store.get_pattern_bucket(sensor_id, hour, weekday)
        except StoreTimeoutError:
            logger.warning(f"Pattern lookup timed out for sensor {sensor_id}; "
                           "treating baseline as unavailable")
            pattern = None

        if pattern is None or pattern.sample_count < config.MIN_PATTERN_SAMPLES:
            return AnomalyCheck(is_anomaly=False, deviation=0, expected_range=None)

        band = config.ANOMALY_STDDEV_MULTIPLIER * pattern.std_deviation
        expected_min = pattern.avg_flow_rate - band
        expected_max = pattern.avg_flow_rate + band

        is_anomaly = current_flow < expected_min or current_flow > expected_max
        deviation = current_flow - pattern.avg_flow_rate

        if is_anomaly:
            logger.info(
                f"Sensor {sensor_id}: flow {current_flow:.0f} outside "
                f"[{expected_min}, {expected_max}] for bucket "
                f"(hour={hour}, day={weekday})"
            )

        return AnomalyCheck(
            is_anomaly=is_anomaly,
            deviation=deviation,
            expected_range=(expected_min, expected_max),
        )
