"""
patterns.py — Per-Sensor Flow Baseline Learning
================================================

Keeps the FlowPattern store current.  Each learning pass takes a sensor's
most recent readings, groups them by (day_of_week, hour_of_day) in local
time, and upserts one baseline per non-empty bucket.

Why hour × weekday buckets?
    Household and building water use follows strong daily and weekly
    rhythms.  168 buckets per sensor give a naive seasonal baseline without
    a trained model, and bound memory no matter how long a sensor runs.

The learner is idempotent in the bucket *set*: re-learning the same history
touches the same buckets and only grows their sample counts.
"""

import logging

import numpy as np

from . import config
from .models import FlowPattern
from .preprocessing import add_time_buckets, prepare_readings
from .store import DataStore, StoreTimeoutError

logger = logging.getLogger("analytics.patterns")


class PatternLearner:
    """
    Recomputes (sensor, hour, weekday) flow baselines from recent history.

    Attributes:
        store: DataStore holding readings and pattern buckets.
        history_limit: Readings considered per pass.
        min_readings: Below this the pass is a no-op.
    """

    def __init__(self, store: DataStore, history_limit: int = None,
                 min_readings: int = None):
        self.store = store
        self.history_limit = history_limit or config.PATTERN_HISTORY_LIMIT
        self.min_readings = min_readings or config.MIN_LEARNING_READINGS

    def learn_patterns(self, sensor_id: int) -> list[FlowPattern]:
        """
        Learn baselines for one sensor.

        Args:
            sensor_id: Sensor whose history is learned.

        Returns:
            The stored buckets after merging, or an empty list when there
            was not enough history.  A timed-out bucket write ends the pass
            early with the buckets stored so far.
        """
        try:
            readings = self.store.get_recent_readings(sensor_id, self.history_limit)
        except StoreTimeoutError:
            logger.warning(f"History fetch timed out for sensor {sensor_id}; "
                           "skipping learning pass")
            return []

        df = prepare_readings(readings)
        if len(df) < self.min_readings:
            logger.info(f"Sensor {sensor_id}: {len(df)} readings, need "
                        f"≥{self.min_readings} to learn patterns")
            return []

        df = add_time_buckets(df)
        learned = []
        for (day, hour), group in df.groupby(["day_of_week", "hour_of_day"]):
            flows = group["flow_rate"].to_numpy(dtype=np.float64)
            bucket = FlowPattern(
                sensor_id=sensor_id,
                hour_of_day=int(hour),
                day_of_week=int(day),
                avg_flow_rate=int(round(flows.mean())),
                min_flow_rate=int(np.floor(flows.min())),
                max_flow_rate=int(np.ceil(flows.max())),
                std_deviation=int(round(flows.std(ddof=0))),
                sample_count=len(flows),
            )
            try:
                learned.append(self.store.upsert_pattern_bucket(bucket))
            except StoreTimeoutError:
                logger.warning(f"Sensor {sensor_id}: bucket write timed out at "
                               f"day={int(day)} hour={int(hour)}; stopping pass "
                               f"after {len(learned)} buckets")
                return learned

        logger.info(f"Sensor {sensor_id}: learned {len(learned)} pattern "
                    f"buckets from {len(df)} readings")
        return learned
