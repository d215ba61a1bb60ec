"""
store.py — Data-Access Contract and Fallback Provider
======================================================

The analytics engine never talks to a database directly. Every analysis
receives an object implementing ``DataStore`` and only uses the operations
defined here:

    Readings   — append-only flow/pressure samples per sensor
    Patterns   — learned (sensor, hour, weekday) flow baselines
    Sensors    — status is the externally visible "current state"
    RiskScores — one current score per sensor, overwritten on each run
    Alerts     — raised for leak / blockage classifications

Implementations:
    InMemoryStore  — thread-safe in-process store. Used as the injected
                     fallback provider when the real datastore is down, and
                     by the test-suite. Can be snapshotted with joblib.
    BoundedStore   — wraps any store and enforces a per-call timeout so no
                     analysis blocks indefinitely.
    FirebaseStore  — Firebase Realtime Database adapter (firebase_store.py).

Failure taxonomy:
    StoreUnavailableError — the backing datastore cannot be reached. Always
                            propagated so the caller can fall back to its
                            last known value.
    StoreTimeoutError     — a call exceeded its time budget. Read paths
                            treat this as "insufficient data".
"""

import bisect
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import replace
from typing import Optional

import joblib

from . import config, utils
from .models import Alert, FlowAggregate, FlowPattern, Reading, RiskScore, Sensor

logger = logging.getLogger("analytics.store")


class StoreError(RuntimeError):
    """Base class for datastore failures."""


class StoreUnavailableError(StoreError):
    """The underlying datastore could not be reached."""


class StoreTimeoutError(StoreError):
    """A datastore call did not complete within its time budget."""


class DataStore(ABC):
    """Read/write contract the analytics engine needs from a datastore."""

    # ── Readings ─────────────────────────────────────────────────

    @abstractmethod
    def add_reading(self, reading: Reading) -> None:
        ...

    @abstractmethod
    def get_readings_in_range(self, sensor_id: int, start_ms: int, end_ms: int,
                              limit: int = config.MAX_RANGE_READINGS) -> list[Reading]:
        """Readings with start_ms <= timestamp <= end_ms, oldest first."""

    @abstractmethod
    def get_recent_readings(self, sensor_id: int, limit: int) -> list[Reading]:
        """The ``limit`` most recent readings, newest first."""

    @abstractmethod
    def get_aggregated_flow(self, window_ms: int,
                            now_ms: Optional[int] = None) -> list[FlowAggregate]:
        """Per-sensor flow/pressure summary over the trailing window."""

    # ── Patterns ─────────────────────────────────────────────────

    @abstractmethod
    def get_pattern_bucket(self, sensor_id: int, hour: int,
                           weekday: int) -> Optional[FlowPattern]:
        ...

    @abstractmethod
    def get_pattern_buckets(self, sensor_id: int) -> list[FlowPattern]:
        ...

    @abstractmethod
    def upsert_pattern_bucket(self, bucket: FlowPattern) -> FlowPattern:
        """
        Merge a freshly computed bucket into the stored one.

        sample_count grows by the incoming count, avg/stddev are replaced and
        min/max widen to keep bounding every contributing sample. Returns the
        stored bucket.
        """

    # ── Risk scores ──────────────────────────────────────────────

    @abstractmethod
    def upsert_risk_score(self, score: RiskScore) -> None:
        ...

    @abstractmethod
    def get_risk_score(self, sensor_id: int) -> Optional[RiskScore]:
        ...

    @abstractmethod
    def list_risk_scores(self) -> list[RiskScore]:
        """All current scores, highest risk first."""

    # ── Sensors ──────────────────────────────────────────────────

    @abstractmethod
    def add_sensor(self, sensor: Sensor) -> int:
        ...

    @abstractmethod
    def get_sensor(self, sensor_id: int) -> Optional[Sensor]:
        ...

    @abstractmethod
    def list_sensors(self) -> list[Sensor]:
        ...

    @abstractmethod
    def set_sensor_status(self, sensor_id: int, status: str) -> None:
        ...

    # ── Alerts ───────────────────────────────────────────────────

    @abstractmethod
    def create_alert(self, alert: Alert) -> int:
        ...

    @abstractmethod
    def get_alerts_since(self, since_ms: int) -> list[Alert]:
        """Alerts with timestamp >= since_ms, newest first."""

    @abstractmethod
    def get_latest_alert(self, sensor_id: int) -> Optional[Alert]:
        """Most recent alert raised for the sensor, or None."""


def merge_pattern(existing: Optional[FlowPattern], incoming: FlowPattern) -> FlowPattern:
    """Apply the pattern upsert merge rule to an existing bucket."""
    if existing is None:
        return replace(incoming)
    return replace(
        existing,
        avg_flow_rate=incoming.avg_flow_rate,
        std_deviation=incoming.std_deviation,
        min_flow_rate=min(existing.min_flow_rate, incoming.min_flow_rate),
        max_flow_rate=max(existing.max_flow_rate, incoming.max_flow_rate),
        sample_count=existing.sample_count + incoming.sample_count,
    )


class InMemoryStore(DataStore):
    """
    Thread-safe in-process implementation of the store contract.

    Readings are kept sorted by timestamp per sensor. Returned records are
    copies, so callers cannot mutate stored state behind the store's back.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._readings: dict[int, list[Reading]] = {}
        self._patterns: dict[tuple[int, int, int], FlowPattern] = {}
        self._risk_scores: dict[int, RiskScore] = {}
        self._sensors: dict[int, Sensor] = {}
        self._alerts: list[Alert] = []
        self._next_alert_id = 1

    # ── Readings ─────────────────────────────────────────────────

    def add_reading(self, reading: Reading) -> None:
        with self._lock:
            series = self._readings.setdefault(reading.sensor_id, [])
            bisect.insort(series, reading, key=lambda r: r.timestamp)

    def get_readings_in_range(self, sensor_id, start_ms, end_ms,
                              limit=config.MAX_RANGE_READINGS):
        with self._lock:
            series = self._readings.get(sensor_id, [])
            lo = bisect.bisect_left(series, start_ms, key=lambda r: r.timestamp)
            hi = bisect.bisect_right(series, end_ms, key=lambda r: r.timestamp)
            selected = series[lo:hi]
            # Keep the newest ``limit`` readings, still oldest first
            return list(selected[-limit:]) if limit else []

    def get_recent_readings(self, sensor_id, limit):
        with self._lock:
            series = self._readings.get(sensor_id, [])
            return list(reversed(series[-limit:])) if limit else []

    def get_aggregated_flow(self, window_ms, now_ms=None):
        cutoff = (now_ms if now_ms is not None else utils.now_ms()) - window_ms
        aggregates = []
        with self._lock:
            for sensor_id in sorted(self._readings):
                series = self._readings[sensor_id]
                lo = bisect.bisect_left(series, cutoff, key=lambda r: r.timestamp)
                window = series[lo:]
                if not window:
                    continue
                flows = [r.flow_rate for r in window]
                pressures = [r.pressure for r in window]
                aggregates.append(FlowAggregate(
                    sensor_id=sensor_id,
                    avg_flow=sum(flows) / len(flows),
                    min_flow=min(flows),
                    max_flow=max(flows),
                    avg_pressure=sum(pressures) / len(pressures),
                    count=len(window),
                ))
        return aggregates

    # ── Patterns ─────────────────────────────────────────────────

    def get_pattern_bucket(self, sensor_id, hour, weekday):
        with self._lock:
            bucket = self._patterns.get((sensor_id, hour, weekday))
            return replace(bucket) if bucket else None

    def get_pattern_buckets(self, sensor_id):
        with self._lock:
            buckets = [replace(b) for key, b in self._patterns.items()
                       if key[0] == sensor_id]
        return sorted(buckets, key=lambda b: (b.day_of_week, b.hour_of_day))

    def upsert_pattern_bucket(self, bucket):
        key = (bucket.sensor_id, bucket.hour_of_day, bucket.day_of_week)
        with self._lock:
            merged = merge_pattern(self._patterns.get(key), bucket)
            self._patterns[key] = merged
            return replace(merged)

    # ── Risk scores ──────────────────────────────────────────────

    def upsert_risk_score(self, score):
        with self._lock:
            self._risk_scores[score.sensor_id] = replace(score, factors=list(score.factors))

    def get_risk_score(self, sensor_id):
        with self._lock:
            score = self._risk_scores.get(sensor_id)
            return replace(score, factors=list(score.factors)) if score else None

    def list_risk_scores(self):
        with self._lock:
            scores = [replace(s, factors=list(s.factors))
                      for s in self._risk_scores.values()]
        return sorted(scores, key=lambda s: s.risk_score, reverse=True)

    # ── Sensors ──────────────────────────────────────────────────

    def add_sensor(self, sensor):
        with self._lock:
            self._sensors[sensor.id] = replace(sensor)
            return sensor.id

    def get_sensor(self, sensor_id):
        with self._lock:
            sensor = self._sensors.get(sensor_id)
            return replace(sensor) if sensor else None

    def list_sensors(self):
        with self._lock:
            return [replace(self._sensors[k]) for k in sorted(self._sensors)]

    def set_sensor_status(self, sensor_id, status):
        with self._lock:
            sensor = self._sensors.get(sensor_id)
            if sensor is None:
                logger.warning(f"Cannot set status of unknown sensor {sensor_id}")
                return
            sensor.status = status

    # ── Alerts ───────────────────────────────────────────────────

    def create_alert(self, alert):
        with self._lock:
            stored = replace(alert, id=self._next_alert_id)
            self._next_alert_id += 1
            self._alerts.append(stored)
            return stored.id

    def get_alerts_since(self, since_ms):
        with self._lock:
            alerts = [replace(a) for a in self._alerts if a.timestamp >= since_ms]
        return sorted(alerts, key=lambda a: a.timestamp, reverse=True)

    def get_latest_alert(self, sensor_id):
        with self._lock:
            alerts = [a for a in self._alerts if a.sensor_id == sensor_id]
            if not alerts:
                return None
            return replace(max(alerts, key=lambda a: (a.timestamp, a.id)))

    # ── Persistence ──────────────────────────────────────────────

    def save_snapshot(self, path: str = None) -> None:
        """
        Serialize the whole store to disk using joblib.

        Args:
            path: Output file path.  Defaults to config.SNAPSHOT_PATH.
        """
        path = path or config.SNAPSHOT_PATH
        with self._lock:
            state = {
                "readings": self._readings,
                "patterns": self._patterns,
                "risk_scores": self._risk_scores,
                "sensors": self._sensors,
                "alerts": self._alerts,
                "next_alert_id": self._next_alert_id,
            }
            joblib.dump(state, path)
        logger.info(f"Store snapshot saved to {path}")

    @classmethod
    def load_snapshot(cls, path: str = None) -> "InMemoryStore":
        """
        Build a store from a snapshot written by save_snapshot().

        Args:
            path: Input file path.  Defaults to config.SNAPSHOT_PATH.
        """
        path = path or config.SNAPSHOT_PATH
        state = joblib.load(path)
        store = cls()
        store._readings = state["readings"]
        store._patterns = state["patterns"]
        store._risk_scores = state["risk_scores"]
        store._sensors = state["sensors"]
        store._alerts = state["alerts"]
        store._next_alert_id = state["next_alert_id"]
        logger.info(f"Store snapshot loaded from {path}")
        return store


class BoundedStore(DataStore):
    """
    Timeout-enforcing proxy around another store.

    Each call runs on a worker thread; if it does not finish within
    ``timeout`` seconds a StoreTimeoutError is raised and the call is
    cancelled if it has not started yet.  A call that is already running
    cannot be stopped, so the outcome of a timed-out write is unknown: it
    may still land.  Writes are keyed by sensor id and a new write for a
    sensor first waits for that sensor's abandoned write to finish, so
    writes for one sensor always land in submission order.
    """

    def __init__(self, inner: DataStore, timeout: float = None,
                 max_workers: int = None):
        self.inner = inner
        self.timeout = timeout if timeout is not None else config.STORE_TIMEOUT_SECONDS
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or config.STORE_WORKERS,
            thread_name_prefix="store",
        )
        self._pending_lock = threading.Lock()
        self._pending_writes = {}

    def _call(self, method, *args, sensor_id: int = None):
        if sensor_id is not None:
            self._wait_for_pending_write(sensor_id, method.__name__)

        future = self._executor.submit(method, *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            if not future.cancel() and sensor_id is not None:
                self._track_pending_write(sensor_id, future)
            logger.error(f"Store call {method.__name__} timed out "
                         f"after {self.timeout}s")
            raise StoreTimeoutError(
                f"{method.__name__} exceeded {self.timeout}s"
            ) from None

    def _track_pending_write(self, sensor_id: int, future) -> None:
        with self._pending_lock:
            self._pending_writes[sensor_id] = future
        future.add_done_callback(
            lambda done: self._clear_pending_write(sensor_id, done)
        )

    def _clear_pending_write(self, sensor_id: int, future) -> None:
        with self._pending_lock:
            if self._pending_writes.get(sensor_id) is future:
                del self._pending_writes[sensor_id]

    def _wait_for_pending_write(self, sensor_id: int, name: str) -> None:
        with self._pending_lock:
            pending = self._pending_writes.get(sensor_id)
        if pending is None:
            return
        try:
            error = pending.exception(timeout=self.timeout)
        except FutureTimeoutError:
            logger.error(f"Store call {name} for sensor {sensor_id} blocked by "
                         f"an earlier write still running")
            raise StoreTimeoutError(
                f"{name} waited {self.timeout}s on an earlier write for "
                f"sensor {sensor_id}"
            ) from None
        if error is not None:
            logger.warning(f"Abandoned write for sensor {sensor_id} failed: {error}")

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def add_reading(self, reading):
        return self._call(self.inner.add_reading, reading,
                          sensor_id=reading.sensor_id)

    def get_readings_in_range(self, sensor_id, start_ms, end_ms,
                              limit=config.MAX_RANGE_READINGS):
        return self._call(self.inner.get_readings_in_range,
                          sensor_id, start_ms, end_ms, limit)

    def get_recent_readings(self, sensor_id, limit):
        return self._call(self.inner.get_recent_readings, sensor_id, limit)

    def get_aggregated_flow(self, window_ms, now_ms=None):
        return self._call(self.inner.get_aggregated_flow, window_ms, now_ms)

    def get_pattern_bucket(self, sensor_id, hour, weekday):
        return self._call(self.inner.get_pattern_bucket, sensor_id, hour, weekday)

    def get_pattern_buckets(self, sensor_id):
        return self._call(self.inner.get_pattern_buckets, sensor_id)

    def upsert_pattern_bucket(self, bucket):
        return self._call(self.inner.upsert_pattern_bucket, bucket,
                          sensor_id=bucket.sensor_id)

    def upsert_risk_score(self, score):
        return self._call(self.inner.upsert_risk_score, score,
                          sensor_id=score.sensor_id)

    def get_risk_score(self, sensor_id):
        return self._call(self.inner.get_risk_score, sensor_id)

    def list_risk_scores(self):
        return self._call(self.inner.list_risk_scores)

    def add_sensor(self, sensor):
        return self._call(self.inner.add_sensor, sensor)

    def get_sensor(self, sensor_id):
        return self._call(self.inner.get_sensor, sensor_id)

    def list_sensors(self):
        return self._call(self.inner.list_sensors)

    def set_sensor_status(self, sensor_id, status):
        return self._call(self.inner.set_sensor_status, sensor_id, status,
                          sensor_id=sensor_id)

    def create_alert(self, alert):
        return self._call(self.inner.create_alert, alert,
                          sensor_id=alert.sensor_id)

    def get_alerts_since(self, since_ms):
        return self._call(self.inner.get_alerts_since, since_ms)

    def get_latest_alert(self, sensor_id):
        return self._call(self.inner.get_latest_alert, sensor_id)


def build_store(backend: str = None) -> DataStore:
    """
    Create the configured datastore.

    Args:
        backend: "memory" or "firebase". Defaults to config.STORE_BACKEND.

    Returns:
        A DataStore instance (not yet wrapped in BoundedStore).
    """
    backend = (backend or config.STORE_BACKEND).lower()
    if backend == "firebase":
        from .firebase_store import FirebaseStore
        return FirebaseStore()
    if backend == "memory":
        return InMemoryStore()
    raise ValueError(f"Unknown store backend: {backend!r}")
