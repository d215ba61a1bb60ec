"""
windowing.py — Short-Window Flow Analysis
==========================================

Classifies a sensor's instantaneous state from the readings of the last few
minutes.  Looking at a window instead of a single reading is what keeps a
single noisy sample from raising a leak alarm.

How it works:
    1. Fetch every reading in [now − window, now].
    2. Fewer than config.MIN_WINDOW_READINGS → explicit low-confidence
       "normal" with the factor insufficient_data.
    3. Compute mean flow, mean pressure and flow stddev.
    4. Apply the rules below in order.  Each rule is evaluated on its own;
       a later rule can escalate the status but never clears a flag.
    5. Hand the result to the state machine, which updates the sensor and
       raises an alert on a transition into leak / blockage.

Rules (scaled units):
    flow std > 0.3 × mean flow                → warning / medium   high_flow_variance
    mean pressure < 3000 (30 PSI)             → leak / high, 85    low_pressure
    mean flow < 100 and pressure > 5000       → blockage / medium, 75   possible_blockage
    learned-pattern anomaly                   → pattern_deviation, normal → warning,
                                                 confidence + 10 (max 95)
"""

import logging
from typing import Callable

from . import config
from .anomaly import AnomalyChecker
from .control_logic import SensorStateMachine
from .feature_engineering import extract_features
from .models import BLOCKAGE, HIGH, LEAK, LOW, MEDIUM, NORMAL, WARNING, WindowAnalysis
from .store import DataStore, StoreTimeoutError
from .utils import now_ms

logger = logging.getLogger("analytics.windowing")

INSUFFICIENT_DATA = "insufficient_data"
SENSOR_NOT_FOUND = "sensor_not_found"
HIGH_FLOW_VARIANCE = "high_flow_variance"
LOW_PRESSURE = "low_pressure"
POSSIBLE_BLOCKAGE = "possible_blockage"
PATTERN_DEVIATION = "pattern_deviation"


def generate_analysis_message(status: str, factors: list[str], location: str) -> str:
    """Render the fixed per-status message for an analysis result."""
    factor_text = f" Factors: {', '.join(factors)}." if factors else ""

    if status == LEAK:
        return f"Leak detected at {location}.{factor_text}"
    if status == BLOCKAGE:
        return f"Possible blockage detected at {location}.{factor_text}"
    if status == WARNING:
        return (f"Abnormal flow pattern at {location}. "
                f"Monitoring recommended.{factor_text}")
    return f"Normal operation at {location}."


class WindowedAnalyzer:
    """
    Time-window classifier for a single sensor.

    Attributes:
        store: DataStore with readings and sensors.
        anomaly_checker: Baseline comparison used for pattern_deviation.
        state_machine: Applies the resulting status to the sensor.
        clock: Callable returning the current time in ms.
    """

    def __init__(self, store: DataStore, anomaly_checker: AnomalyChecker = None,
                 state_machine: SensorStateMachine = None,
                 clock: Callable[[], int] = None):
        self.store = store
        self.clock = clock or now_ms
        self.anomaly_checker = anomaly_checker or AnomalyChecker(store, self.clock)
        self.state_machine = state_machine or SensorStateMachine(store, self.clock)

    def analyze_window(self, sensor_id: int,
                       window_minutes: float = None) -> WindowAnalysis:
        """
        Classify the sensor's behaviour over the trailing window.

        Args:
            sensor_id: Sensor to analyze.
            window_minutes: Window length, > 0.  Defaults to
                config.DEFAULT_WINDOW_MINUTES.

        Returns:
            WindowAnalysis with status, confidence, severity, factors and
            message.

        Raises:
            ValueError: If window_minutes is not positive.
            StoreUnavailableError: If the datastore cannot be reached.
        """
        if window_minutes is None:
            window_minutes = config.DEFAULT_WINDOW_MINUTES
        if window_minutes <= 0:
            raise ValueError(f"window_minutes must be > 0, got {window_minutes}")

        end_ms = self.clock()
        start_ms = end_ms - int(window_minutes * 60 * 1000)

        try:
            sensor = self.store.get_sensor(sensor_id)
            if sensor is None:
                logger.warning(f"Sensor {sensor_id} not found")
                return WindowAnalysis(
                    sensor_id=sensor_id,
                    status=NORMAL,
                    confidence=0,
                    severity=LOW,
                    factors=[SENSOR_NOT_FOUND],
                    message="Sensor not found",
                )
            readings = self.store.get_readings_in_range(sensor_id, start_ms, end_ms)
        except StoreTimeoutError:
            logger.warning(f"Store timed out while analyzing sensor {sensor_id}")
            readings = []
            sensor = None

        features = extract_features(readings) if readings else None
        if features is None or features.count < config.MIN_WINDOW_READINGS:
            return WindowAnalysis(
                sensor_id=sensor_id,
                status=NORMAL,
                confidence=config.INSUFFICIENT_DATA_CONFIDENCE,
                severity=LOW,
                factors=[INSUFFICIENT_DATA],
                message="Insufficient data for analysis",
            )

        factors = []
        status = NORMAL
        severity = LOW
        confidence = config.BASE_CONFIDENCE

        # Unstable flow is an early leak symptom
        if features.flow_std > features.flow_mean * config.FLOW_VARIANCE_RATIO:
            factors.append(HIGH_FLOW_VARIANCE)
            status = WARNING
            severity = MEDIUM

        if features.pressure_mean < config.LEAK_PRESSURE_THRESHOLD:
            factors.append(LOW_PRESSURE)
            status = LEAK
            severity = HIGH
            confidence = config.LOW_PRESSURE_CONFIDENCE

        if (features.flow_mean < config.BLOCKAGE_FLOW_THRESHOLD
                and features.pressure_mean > config.BLOCKAGE_PRESSURE_THRESHOLD):
            factors.append(POSSIBLE_BLOCKAGE)
            status = BLOCKAGE
            severity = MEDIUM
            confidence = config.BLOCKAGE_CONFIDENCE

        anomaly = self.anomaly_checker.check_anomaly(
            sensor_id, features.flow_mean, now=end_ms
        )
        if anomaly.is_anomaly:
            factors.append(PATTERN_DEVIATION)
            if status == NORMAL:
                status = WARNING
                severity = MEDIUM
            confidence = min(confidence + config.PATTERN_DEVIATION_BOOST,
                             config.MAX_CONFIDENCE)

        result = WindowAnalysis(
            sensor_id=sensor_id,
            status=status,
            confidence=confidence,
            severity=severity,
            factors=factors,
            message=generate_analysis_message(status, factors, sensor.location),
        )

        log_msg = (f"Sensor {sensor_id}: status={status} confidence={confidence} "
                   f"flow={features.flow_mean:.0f} pressure={features.pressure_mean:.0f} "
                   f"n={features.count}")
        if status in (LEAK, BLOCKAGE):
            logger.warning(log_msg)
        elif status == WARNING:
            logger.info(log_msg)
        else:
            logger.debug(log_msg)

        result.alert_id = self.state_machine.apply_classification(sensor, result)
        return result
