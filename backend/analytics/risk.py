"""
risk.py — Pipe Failure Risk Scoring
====================================

Combines a sensor's current status, recent flow variability, pressure,
baseline deviation and pipe type into a bounded risk score with a
human-readable recommendation.

Additive model (each factor contributes independently):

    factor                              risk   leak   blockage
    ---------------------------------   ----   ----   --------
    status leak                         +50    +80
    status warning                      +25    +30
    flow CV > 0.5        (≥10 readings) +20    +25
    mean pressure < 35 PSI (≥10 readings) +15  +20
    low flow + high pressure (≥10)                    +40
    latest flow outside baseline band   +15
    main pipe                           +5

All three outputs are clamped to integers in [0, 100].
"""

import logging
from typing import Callable, Optional

from . import config
from .anomaly import AnomalyChecker
from .feature_engineering import extract_features
from .models import LEAK, WARNING, PredictionResult, RiskScore
from .store import DataStore, StoreTimeoutError
from .utils import clamp_score, now_ms

logger = logging.getLogger("analytics.risk")

ACTIVE_LEAK = "Active leak detected"
WARNING_ACTIVE = "Warning status active"
HIGH_VARIABILITY = "High flow variability"
LOW_PRESSURE = "Below-normal pressure"
BLOCKAGE_PATTERN = "Possible blockage pattern"
PATTERN_DEVIATION = "Significant pattern deviation"
MAIN_PIPE = "Main pipe (higher impact)"

BLOCKAGE_PROBABILITY = 40


def recommend(risk_score: int) -> str:
    """Map a final risk score to a maintenance recommendation."""
    if risk_score > 70:
        return "Immediate inspection recommended. High risk of failure."
    if risk_score > 40:
        return "Schedule preventive maintenance within the next week."
    if risk_score > 20:
        return "Monitor closely. Consider inspection during next maintenance cycle."
    return "Continue regular monitoring."


class RiskScorer:
    """
    Scores one sensor and persists the latest result.

    Attributes:
        store: DataStore with sensors, readings and risk scores.
        anomaly_checker: Baseline comparison for the latest reading.
        clock: Callable returning the current time in ms.
    """

    def __init__(self, store: DataStore, anomaly_checker: AnomalyChecker = None,
                 clock: Callable[[], int] = None):
        self.store = store
        self.clock = clock or now_ms
        self.anomaly_checker = anomaly_checker or AnomalyChecker(store, self.clock)

    def score_risk(self, sensor_id: int) -> Optional[PredictionResult]:
        """
        Compute, persist and return the sensor's risk score.

        Args:
            sensor_id: Sensor to score.

        Returns:
            PredictionResult, or None if the sensor does not exist or could
            not be read in time.

        Raises:
            StoreUnavailableError: If the datastore cannot be reached.
        """
        try:
            sensor = self.store.get_sensor(sensor_id)
        except StoreTimeoutError:
            logger.warning(f"Sensor lookup timed out for sensor {sensor_id}; not scored")
            return None
        if sensor is None:
            return None

        now = self.clock()
        try:
            readings = self.store.get_recent_readings(sensor_id, config.RISK_HISTORY_LIMIT)
        except StoreTimeoutError:
            logger.warning(f"Reading history timed out for sensor {sensor_id}")
            readings = []

        factors = []
        risk = 0
        leak_probability = 0
        blockage_probability = 0

        if sensor.status == LEAK:
            risk += 50
            leak_probability += 80
            factors.append(ACTIVE_LEAK)
        elif sensor.status == WARNING:
            risk += 25
            leak_probability += 30
            factors.append(WARNING_ACTIVE)

        features = extract_features(readings) if readings else None

        if features is not None and features.count >= config.MIN_RISK_READINGS:
            # flow_cv is None for zero mean flow: not evaluated
            if features.flow_cv is not None and features.flow_cv > config.RISK_CV_THRESHOLD:
                risk += 20
                leak_probability += 25
                factors.append(HIGH_VARIABILITY)

            if features.pressure_mean < config.RISK_PRESSURE_THRESHOLD:
                risk += 15
                leak_probability += 20
                factors.append(LOW_PRESSURE)

            if (features.flow_mean < config.BLOCKAGE_FLOW_THRESHOLD
                    and features.pressure_mean > config.BLOCKAGE_PRESSURE_THRESHOLD):
                blockage_probability += BLOCKAGE_PROBABILITY
                factors.append(BLOCKAGE_PATTERN)

        if features is not None:
            check = self.anomaly_checker.check_anomaly(
                sensor_id, features.latest_flow, now=now
            )
            if check.is_anomaly:
                risk += 15
                factors.append(PATTERN_DEVIATION)

        if sensor.pipe_type == "main":
            risk += 5
            factors.append(MAIN_PIPE)

        risk = clamp_score(risk)
        leak_probability = clamp_score(leak_probability)
        blockage_probability = clamp_score(blockage_probability)

        try:
            self.store.upsert_risk_score(RiskScore(
                sensor_id=sensor_id,
                risk_score=risk,
                leak_probability=leak_probability,
                blockage_probability=blockage_probability,
                factors=list(factors),
                last_analyzed_at=now,
            ))
        except StoreTimeoutError:
            logger.warning(f"Risk score write timed out for sensor {sensor_id}")

        logger.info(f"Sensor {sensor_id}: risk={risk} leak={leak_probability} "
                    f"blockage={blockage_probability} factors={factors}")

        return PredictionResult(
            sensor_id=sensor_id,
            sensor_name=sensor.name,
            risk_score=risk,
            leak_probability=leak_probability,
            blockage_probability=blockage_probability,
            factors=factors,
            recommendation=recommend(risk),
        )
