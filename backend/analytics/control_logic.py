"""
control_logic.py — Sensor Status State Machine
===============================================

Owns every write to Sensor.status and every alert raised for a leak or
blockage classification.  The machine is deliberately conservative:

States:
    active   — All clear.
    warning  — Abnormal behaviour (variance, pattern deviation, blockage).
    leak     — Leak confirmed by the analyzer or forced by an operator.
    offline  — Set externally; never produced by analysis.

Transitions:
    active  -> warning -> leak    escalation driven by the Windowed Analyzer
    active  -> leak               sudden pressure drop skips warning
    any     -> active             only through reset()
    any     -> offline            only through mark_offline()

The analyzer can only push a sensor up the ladder active < warning < leak.
There is no automatic recovery: a fault is cleared by an explicit reset.
"""

import logging
import random
from typing import Callable, Optional

from .models import (
    ACTIVE, BLOCKAGE, HIGH, LEAK, OFFLINE, WARNING,
    Alert, Sensor, WindowAnalysis,
)
from .store import DataStore
from .utils import now_ms

logger = logging.getLogger("analytics.control_logic")

# Escalation order of analyzer-driven states
_RANK = {ACTIVE: 0, WARNING: 1, LEAK: 2}

# Analyzer classification -> sensor status
_STATUS_FOR_CLASSIFICATION = {
    WARNING: WARNING,
    LEAK: LEAK,
    BLOCKAGE: WARNING,
}


class SensorStateMachine:
    """
    Applies analyzer classifications and operator actions to sensors.

    Attributes:
        store: DataStore holding sensors and alerts.
        clock: Callable returning the current time in ms.
    """

    def __init__(self, store: DataStore, clock: Callable[[], int] = None):
        self.store = store
        self.clock = clock or now_ms

    def _blockage_already_alerted(self, sensor_id: int) -> bool:
        """True when the sensor's newest alert is an open blockage alert."""
        latest = self.store.get_latest_alert(sensor_id)
        return (latest is not None and latest.type == BLOCKAGE
                and not latest.is_resolved)

    def apply_classification(self, sensor: Sensor,
                             analysis: WindowAnalysis) -> Optional[int]:
        """
        Move a sensor to the status implied by an analysis result.

        The alert is written before the status so that a failed alert write
        leaves the sensor where it was and the next analysis retries the
        whole transition.

        A blockage maps to status warning.  A sensor already at warning
        (e.g. after a high-variance window) still gets one blockage alert,
        unless its newest alert is already an open blockage.

        Args:
            sensor: Sensor as last read from the store.
            analysis: Result of analyze_window for that sensor.

        Returns:
            Id of the alert created, or None when no alert was needed.
        """
        target = _STATUS_FOR_CLASSIFICATION.get(analysis.status)
        if target is None:
            return None

        if sensor.status == OFFLINE:
            logger.debug(f"Sensor {sensor.id} is offline; ignoring "
                         f"'{analysis.status}' classification")
            return None

        escalates = _RANK[target] > _RANK.get(sensor.status, 0)

        if analysis.status == LEAK:
            raise_alert = escalates
        elif analysis.status == BLOCKAGE:
            raise_alert = escalates or (
                sensor.status != LEAK
                and not self._blockage_already_alerted(sensor.id)
            )
        else:
            raise_alert = False

        if not escalates and not raise_alert:
            logger.debug(f"Sensor {sensor.id} already at '{sensor.status}', "
                         f"no transition for '{analysis.status}'")
            return None

        alert_id = None
        if raise_alert:
            alert_id = self.store.create_alert(Alert(
                sensor_id=sensor.id,
                type=analysis.status,
                severity=analysis.severity,
                message=analysis.message,
                location=sensor.location,
                timestamp=self.clock(),
            ))
            logger.warning(f"ALERT #{alert_id}: {analysis.status.upper()} at "
                           f"{sensor.location} (sensor {sensor.id})")

        if escalates:
            self.store.set_sensor_status(sensor.id, target)
            logger.info(f"Sensor {sensor.id}: {sensor.status} -> {target} "
                        f"({analysis.status})")

        return alert_id

    def pick_simulation_target(self) -> Optional[Sensor]:
        """Random active sensor for a simulated leak, or None if none is active."""
        candidates = [s for s in self.store.list_sensors() if s.status == ACTIVE]
        if not candidates:
            logger.warning("Simulated leak requested but no active sensors remain")
            return None
        return random.choice(candidates)

    def simulate_leak(self, sensor_id: int) -> Optional[Alert]:
        """
        Force a sensor into the leak state, bypassing analysis.

        Used by operators and demos to exercise the alerting path.

        Args:
            sensor_id: Target sensor.

        Returns:
            The alert created, or None when the sensor does not exist.
        """
        sensor = self.store.get_sensor(sensor_id)
        if sensor is None:
            logger.warning(f"Simulated leak requested for unknown sensor {sensor_id}")
            return None

        alert = Alert(
            sensor_id=sensor.id,
            type=LEAK,
            severity=HIGH,
            message=f"Leak detected in {sensor.name}",
            location=sensor.location,
            timestamp=self.clock(),
        )
        alert.id = self.store.create_alert(alert)
        self.store.set_sensor_status(sensor.id, LEAK)
        logger.warning(f"SIMULATED LEAK on sensor {sensor.id} ({sensor.location})")
        return alert

    def reset(self, sensor_id: int) -> bool:
        """
        Return one sensor to active.

        Returns:
            True if the sensor exists.
        """
        sensor = self.store.get_sensor(sensor_id)
        if sensor is None:
            return False
        self.store.set_sensor_status(sensor_id, ACTIVE)
        logger.info(f"Sensor {sensor_id} reset to {ACTIVE}")
        return True

    def mark_offline(self, sensor_id: int) -> bool:
        """Mark a sensor offline (external/manual action only)."""
        sensor = self.store.get_sensor(sensor_id)
        if sensor is None:
            return False
        self.store.set_sensor_status(sensor_id, OFFLINE)
        logger.info(f"Sensor {sensor_id} marked {OFFLINE}")
        return True
