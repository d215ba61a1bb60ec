"""
engine.py — Analysis Engine
============================

Single entry point for every analysis the application layer can request.

Orchestrates:
    WindowedAnalyzer        — per-sensor short-window classification
    CrossSensorComparator   — system-wide vs. localized verdict
    PatternLearner          — baseline maintenance
    AnomalyChecker          — live value vs. baseline
    RiskScorer              — per-sensor risk and the ranked prediction list
    LeakClassifier          — leak archetype refinement
    SensorStateMachine      — explicit resets, offline, simulated leaks

Concurrency:
    Analyses for different sensors run in parallel; analyses for the same
    sensor are serialized through a per-sensor lock so that pattern upserts,
    risk writes and status transitions for one sensor never interleave.
    Every store call goes through a BoundedStore, so nothing blocks for
    longer than config.STORE_TIMEOUT_SECONDS.

Usage:
    engine = AnalysisEngine(InMemoryStore())
    result = engine.analyze_window(sensor_id=1)
"""

import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Optional

from . import config
from .anomaly import AnomalyChecker
from .comparison import CrossSensorComparator
from .control_logic import SensorStateMachine
from .leak_classifier import LeakClassifier
from .models import (
    LEAK, OFFLINE, WARNING,
    Alert, AnomalyCheck, ComparisonResult, FlowPattern, LeakClassification,
    PredictionResult, Reading, SystemHealthReport, WindowAnalysis,
)
from .patterns import PatternLearner
from .risk import RiskScorer
from .store import BoundedStore, DataStore, StoreTimeoutError
from .utils import clamp_score, now_ms
from .windowing import WindowedAnalyzer

logger = logging.getLogger("analytics.engine")


def start_of_day_ms(timestamp_ms: int) -> int:
    """Local midnight of the day containing timestamp_ms."""
    local = datetime.fromtimestamp(timestamp_ms / 1000.0)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


class AnalysisEngine:
    """
    Thread-safe facade over all analytics components.

    Attributes:
        store: The BoundedStore every component reads and writes through.
        clock: Callable returning the current time in ms.
    """

    def __init__(self, store: DataStore, clock: Callable[[], int] = None,
                 store_timeout: float = None, batch_workers: int = None):
        self.store = BoundedStore(store, timeout=store_timeout)
        self.clock = clock or now_ms
        self.batch_workers = batch_workers or config.BATCH_WORKERS

        self.state_machine = SensorStateMachine(self.store, self.clock)
        self.anomaly_checker = AnomalyChecker(self.store, self.clock)
        self.windowed_analyzer = WindowedAnalyzer(
            self.store, self.anomaly_checker, self.state_machine, self.clock
        )
        self.comparator = CrossSensorComparator(self.store, clock=self.clock)
        self.pattern_learner = PatternLearner(self.store)
        self.risk_scorer = RiskScorer(self.store, self.anomaly_checker, self.clock)
        self.leak_classifier = LeakClassifier(self.store)

        self._locks: dict[int, threading.RLock] = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

    def _sensor_lock(self, sensor_id: int) -> threading.RLock:
        with self._locks_guard:
            return self._locks[sensor_id]

    # ── Ingestion ────────────────────────────────────────────────

    def ingest_reading(self, reading: Reading) -> None:
        """Append one reading to the store."""
        self.store.add_reading(reading)

    # ── Per-sensor analyses ──────────────────────────────────────

    def analyze_window(self, sensor_id: int,
                       window_minutes: float = None) -> WindowAnalysis:
        with self._sensor_lock(sensor_id):
            return self.windowed_analyzer.analyze_window(sensor_id, window_minutes)

    def learn_patterns(self, sensor_id: int) -> list[FlowPattern]:
        with self._sensor_lock(sensor_id):
            return self.pattern_learner.learn_patterns(sensor_id)

    def check_anomaly(self, sensor_id: int, current_flow: float) -> AnomalyCheck:
        return self.anomaly_checker.check_anomaly(sensor_id, current_flow)

    def score_risk(self, sensor_id: int) -> Optional[PredictionResult]:
        with self._sensor_lock(sensor_id):
            return self.risk_scorer.score_risk(sensor_id)

    def classify_leak(self, sensor_id: int) -> LeakClassification:
        with self._sensor_lock(sensor_id):
            return self.leak_classifier.classify_leak(sensor_id)

    # ── Cross-sensor analyses ────────────────────────────────────

    def compare_across_pipes(self) -> ComparisonResult:
        return self.comparator.compare_across_pipes()

    def learn_all(self) -> dict[int, int]:
        """
        Run the pattern learner for every known sensor.

        Returns:
            Mapping of sensor id to the number of buckets updated, empty
            when the sensor list could not be read in time.
        """
        try:
            sensors = self.store.list_sensors()
        except StoreTimeoutError:
            logger.warning("Sensor list timed out; learning pass skipped")
            return {}

        summary = {}
        for sensor in sensors:
            summary[sensor.id] = len(self.learn_patterns(sensor.id))
        logger.info(f"Pattern learning pass complete for {len(summary)} sensors")
        return summary

    def rank_all(self, sensor_ids: list[int] = None) -> list[PredictionResult]:
        """
        Score sensors in parallel and rank them by risk, highest first.

        Sensors that no longer exist, or whose data could not be read in
        time, are skipped.  A store outage fails the whole batch.
        """
        if sensor_ids is None:
            try:
                sensor_ids = [s.id for s in self.store.list_sensors()]
            except StoreTimeoutError:
                logger.warning("Sensor list timed out; nothing ranked")
                return []
        if not sensor_ids:
            return []

        with ThreadPoolExecutor(max_workers=self.batch_workers,
                                thread_name_prefix="risk") as pool:
            results = list(pool.map(self.score_risk, sensor_ids))

        predictions = [p for p in results if p is not None]
        skipped = len(results) - len(predictions)
        if skipped:
            logger.info(f"Skipped {skipped} missing or timed-out sensors while ranking")
        return sorted(predictions, key=lambda p: p.risk_score, reverse=True)

    def generate_health_report(self) -> SystemHealthReport:
        """
        Summarize system health and the ranked risk predictions.

        overall = 100 − 20·leak − 10·warning − 5·offline − 2·alerts today
                  − 5·high-risk pipes, clamped to [0, 100].

        Sensors whose risk scoring times out are left out of the predictions.
        A timeout on the sensor list or on today's alerts raises
        StoreTimeoutError, since a report missing them would overstate health.
        """
        sensors = self.store.list_sensors()
        alerts_today = self.store.get_alerts_since(start_of_day_ms(self.clock()))

        offline = sum(1 for s in sensors if s.status == OFFLINE)
        warnings = sum(1 for s in sensors if s.status == WARNING)
        leaks = sum(1 for s in sensors if s.status == LEAK)

        predictions = self.rank_all([s.id for s in sensors])
        high_risk = sum(1 for p in predictions
                        if p.risk_score > config.HIGH_RISK_THRESHOLD)

        health = (100 - leaks * 20 - warnings * 10 - offline * 5
                  - len(alerts_today) * 2 - high_risk * 5)

        report = SystemHealthReport(
            overall_health=clamp_score(health),
            total_sensors=len(sensors),
            active_sensors=len(sensors) - offline,
            warning_count=warnings,
            leak_count=leaks,
            predictions=predictions,
        )
        logger.info(f"Health report: overall={report.overall_health} "
                    f"sensors={report.total_sensors} leaks={leaks} "
                    f"warnings={warnings} high_risk={high_risk}")
        return report

    # ── Explicit state transitions ───────────────────────────────

    def simulate_leak(self, sensor_id: int = None) -> Optional[Alert]:
        if sensor_id is None:
            target = self.state_machine.pick_simulation_target()
            if target is None:
                return None
            sensor_id = target.id
        with self._sensor_lock(sensor_id):
            return self.state_machine.simulate_leak(sensor_id)

    def reset_sensor(self, sensor_id: int) -> bool:
        with self._sensor_lock(sensor_id):
            return self.state_machine.reset(sensor_id)

    def reset_all(self) -> int:
        count = 0
        for sensor in self.store.list_sensors():
            if self.reset_sensor(sensor.id):
                count += 1
        return count

    def mark_offline(self, sensor_id: int) -> bool:
        with self._sensor_lock(sensor_id):
            return self.state_machine.mark_offline(sensor_id)

    def shutdown(self) -> None:
        self.store.shutdown()
