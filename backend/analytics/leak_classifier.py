"""
leak_classifier.py — Leak Archetype Classification
===================================================

Refines the diagnosis of a sensor that is already behaving anomalously by
assigning one of four leak archetypes from its recent readings.

Bands are mutually exclusive and checked in order (scaled units):

    burst    flow > 5000, pressure < 2000                       critical
    joint    flow > 3000, pressure < 4000, variance < 1 000 000 high
    pinhole  2000 < flow < 4000, variance < 500 000             medium
    seepage  1500 < flow < 2500                                 low

Estimated loss converts the excess flow over each archetype's base line
from flow-units/min × 100 to litres per hour.
"""

import logging
from typing import Optional

from . import config
from .feature_engineering import FlowFeatures, extract_features
from .models import (
    BURST, CRITICAL, HIGH, JOINT, LOW, MEDIUM, PINHOLE, SEEPAGE, UNKNOWN,
    LeakClassification,
)
from .store import DataStore, StoreTimeoutError

logger = logging.getLogger("analytics.leak_classifier")

URGENCY = {
    CRITICAL: "Immediate action required. Shut off water supply if possible.",
    HIGH: "Urgent repair needed within 24 hours.",
    MEDIUM: "Schedule repair within 1 week.",
    LOW: "Monitor and plan for repair during next maintenance window.",
}

INSUFFICIENT_URGENCY = "Unable to classify - insufficient data"


def _litres_per_hour(scaled_flow: float) -> float:
    return scaled_flow / 100 * 60


def _classify_band(features: FlowFeatures) -> tuple[str, str, float]:
    flow = features.flow_mean
    pressure = features.pressure_mean
    variance = features.flow_variance

    if flow > 5000 and pressure < 2000:
        return BURST, CRITICAL, _litres_per_hour(flow)
    if flow > 3000 and pressure < 4000 and variance < 1_000_000:
        return JOINT, HIGH, _litres_per_hour(flow - 2000)
    if 2000 < flow < 4000 and variance < 500_000:
        return PINHOLE, MEDIUM, _litres_per_hour(flow - 1500)
    if 1500 < flow < 2500:
        return SEEPAGE, LOW, _litres_per_hour(flow - 1200)
    return UNKNOWN, MEDIUM, 0.0


class LeakClassifier:
    """
    Assigns a leak archetype, severity and estimated loss to a sensor.

    Attributes:
        store: DataStore with sensors and readings.
    """

    def __init__(self, store: DataStore):
        self.store = store

    def classify_leak(self, sensor_id: int) -> LeakClassification:
        """
        Classify the sensor's recent behaviour.

        Args:
            sensor_id: Sensor to classify.

        Returns:
            LeakClassification.  Unknown sensors and short histories yield
            type "unknown" with zero loss.

        Raises:
            StoreUnavailableError: If the datastore cannot be reached.
        """
        features: Optional[FlowFeatures] = None
        try:
            sensor = self.store.get_sensor(sensor_id)
            if sensor is not None:
                readings = self.store.get_recent_readings(
                    sensor_id, config.CLASSIFIER_HISTORY_LIMIT
                )
                features = extract_features(readings) if readings else None
        except StoreTimeoutError:
            logger.warning(f"Store timed out while classifying sensor {sensor_id}")

        if features is None or features.count < config.MIN_CLASSIFIER_READINGS:
            return LeakClassification(
                type=UNKNOWN,
                severity=MEDIUM,
                estimated_flow_loss=0,
                urgency=INSUFFICIENT_URGENCY,
            )

        leak_type, severity, loss = _classify_band(features)
        result = LeakClassification(
            type=leak_type,
            severity=severity,
            estimated_flow_loss=max(0, int(round(loss))),
            urgency=URGENCY[severity],
        )
        logger.info(f"Sensor {sensor_id}: classified as {leak_type} "
                    f"({severity}), ~{result.estimated_flow_loss} L/h lost")
        return result
