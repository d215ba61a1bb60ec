"""
firebase_store.py — Firebase Realtime Database Store Adapter
=============================================================

Implements the ``DataStore`` contract on top of Firebase RTDB, which is where
the gateway already lands sensor telemetry.

Layout under config.FIREBASE_ROOT_PATH:

    sensors/{sensorId}                  → sensor record
    readings/{sensorId}/{pushId}        → {flowRate, pressure, temperature, timestamp}
    patterns/{sensorId}/{day}-{hour}    → learned flow baseline
    riskScores/{sensorId}               → latest risk score
    alerts/{alertId}                    → alert record
    meta/nextAlertId                    → alert id counter

Any Firebase error is surfaced as StoreUnavailableError so the engine can
tell "store down" apart from "no data".
"""

import os
import logging
import functools

import firebase_admin
from firebase_admin import credentials, db as firebase_db
from firebase_admin.exceptions import FirebaseError

from . import config, utils
from .models import Alert, FlowAggregate, FlowPattern, Reading, RiskScore, Sensor
from .store import DataStore, StoreUnavailableError, merge_pattern

logger = logging.getLogger("analytics.firebase_store")


def _firebase_call(method):
    """Translate Firebase failures into StoreUnavailableError."""

    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except FirebaseError as e:
            logger.error(f"Firebase call {method.__name__} failed: {e}")
            raise StoreUnavailableError(str(e)) from e

    return wrapper


def _items(data) -> list[tuple]:
    """(key, value) pairs of an RTDB node; integer-keyed nodes come back as lists."""
    if not data:
        return []
    if isinstance(data, list):
        return [(i, e) for i, e in enumerate(data) if e is not None]
    return list(data.items())


def _reading_from_entry(sensor_id: int, entry: dict) -> Reading:
    return Reading(
        sensor_id=sensor_id,
        flow_rate=int(entry.get("flowRate", 0) or 0),
        pressure=int(entry.get("pressure", 0) or 0),
        temperature=entry.get("temperature"),
        timestamp=int(entry.get("timestamp", 0) or 0),
    )


def _sensor_from_entry(sensor_id: int, entry: dict) -> Sensor:
    return Sensor(
        id=sensor_id,
        name=entry.get("name", f"Sensor #{sensor_id}"),
        location=entry.get("location", ""),
        pipe_type=entry.get("pipeType", "main"),
        status=entry.get("status", "active"),
        position_x=int(entry.get("positionX", 50)),
        position_y=int(entry.get("positionY", 50)),
        description=entry.get("description", ""),
    )


def _pattern_from_entry(entry: dict) -> FlowPattern:
    return FlowPattern(
        sensor_id=int(entry["sensorId"]),
        hour_of_day=int(entry["hourOfDay"]),
        day_of_week=int(entry["dayOfWeek"]),
        avg_flow_rate=int(entry["avgFlowRate"]),
        min_flow_rate=int(entry["minFlowRate"]),
        max_flow_rate=int(entry["maxFlowRate"]),
        std_deviation=int(entry["stdDeviation"]),
        sample_count=int(entry.get("sampleCount", 0)),
    )


def _pattern_to_entry(pattern: FlowPattern) -> dict:
    return {
        "sensorId": pattern.sensor_id,
        "hourOfDay": pattern.hour_of_day,
        "dayOfWeek": pattern.day_of_week,
        "avgFlowRate": pattern.avg_flow_rate,
        "minFlowRate": pattern.min_flow_rate,
        "maxFlowRate": pattern.max_flow_rate,
        "stdDeviation": pattern.std_deviation,
        "sampleCount": pattern.sample_count,
    }


def _risk_from_entry(entry: dict) -> RiskScore:
    return RiskScore(
        sensor_id=int(entry["sensorId"]),
        risk_score=int(entry.get("riskScore", 0)),
        leak_probability=int(entry.get("leakProbability", 0)),
        blockage_probability=int(entry.get("blockageProbability", 0)),
        factors=list(entry.get("factors") or []),
        last_analyzed_at=int(entry.get("lastAnalyzedAt", 0)),
    )


def _alert_from_entry(alert_id: int, entry: dict) -> Alert:
    return Alert(
        id=alert_id,
        sensor_id=int(entry["sensorId"]),
        type=entry["type"],
        severity=entry.get("severity", "medium"),
        message=entry.get("message", ""),
        location=entry.get("location", ""),
        timestamp=int(entry.get("timestamp", 0)),
        is_read=bool(entry.get("isRead", False)),
        is_resolved=bool(entry.get("isResolved", False)),
    )


class FirebaseStore(DataStore):
    """
    DataStore backed by Firebase RTDB.

    Initializes the default Firebase app on first use unless another part of
    the process already did.
    """

    def __init__(self, root_path: str = None):
        self.root_path = (root_path or config.FIREBASE_ROOT_PATH).rstrip("/")
        self._ensure_app()

    @staticmethod
    def _ensure_app() -> None:
        if firebase_admin._apps:
            return
        key_path = config.FIREBASE_CREDENTIALS_PATH
        if not os.path.exists(key_path):
            raise StoreUnavailableError(
                f"Firebase service account key not found at {key_path}"
            )
        cred = credentials.Certificate(key_path)
        firebase_admin.initialize_app(cred, {
            "databaseURL": config.FIREBASE_DATABASE_URL,
        })
        logger.info(f"Firebase app initialized for {config.FIREBASE_DATABASE_URL}")

    def _ref(self, *parts):
        path = "/".join([self.root_path, *[str(p) for p in parts]])
        return firebase_db.reference(path)

    # ── Readings ─────────────────────────────────────────────────

    @_firebase_call
    def add_reading(self, reading):
        self._ref("readings", reading.sensor_id).push({
            "flowRate": reading.flow_rate,
            "pressure": reading.pressure,
            "temperature": reading.temperature,
            "timestamp": reading.timestamp,
        })

    @_firebase_call
    def get_readings_in_range(self, sensor_id, start_ms, end_ms,
                              limit=config.MAX_RANGE_READINGS):
        data = (self._ref("readings", sensor_id)
                .order_by_child("timestamp")
                .start_at(start_ms)
                .end_at(end_ms)
                .limit_to_last(limit)
                .get()) or {}
        readings = [_reading_from_entry(sensor_id, e) for _, e in _items(data)]
        return sorted(readings, key=lambda r: r.timestamp)

    @_firebase_call
    def get_recent_readings(self, sensor_id, limit):
        data = (self._ref("readings", sensor_id)
                .order_by_child("timestamp")
                .limit_to_last(limit)
                .get()) or {}
        readings = [_reading_from_entry(sensor_id, e) for _, e in _items(data)]
        return sorted(readings, key=lambda r: r.timestamp, reverse=True)

    def get_aggregated_flow(self, window_ms, now_ms=None):
        end_ms = now_ms if now_ms is not None else utils.now_ms()
        start_ms = end_ms - window_ms
        aggregates = []
        for sensor in self.list_sensors():
            window = self.get_readings_in_range(sensor.id, start_ms, end_ms)
            if not window:
                continue
            flows = [r.flow_rate for r in window]
            pressures = [r.pressure for r in window]
            aggregates.append(FlowAggregate(
                sensor_id=sensor.id,
                avg_flow=sum(flows) / len(flows),
                min_flow=min(flows),
                max_flow=max(flows),
                avg_pressure=sum(pressures) / len(pressures),
                count=len(window),
            ))
        return aggregates

    # ── Patterns ─────────────────────────────────────────────────

    @_firebase_call
    def get_pattern_bucket(self, sensor_id, hour, weekday):
        entry = self._ref("patterns", sensor_id, f"{weekday}-{hour}").get()
        return _pattern_from_entry(entry) if entry else None

    @_firebase_call
    def get_pattern_buckets(self, sensor_id):
        data = self._ref("patterns", sensor_id).get() or {}
        buckets = [_pattern_from_entry(e) for _, e in _items(data)]
        return sorted(buckets, key=lambda b: (b.day_of_week, b.hour_of_day))

    @_firebase_call
    def upsert_pattern_bucket(self, bucket):
        ref = self._ref("patterns", bucket.sensor_id,
                        f"{bucket.day_of_week}-{bucket.hour_of_day}")

        def merge(current):
            existing = _pattern_from_entry(current) if current else None
            return _pattern_to_entry(merge_pattern(existing, bucket))

        # RTDB transactions retry on concurrent writers
        return _pattern_from_entry(ref.transaction(merge))

    # ── Risk scores ──────────────────────────────────────────────

    @_firebase_call
    def upsert_risk_score(self, score):
        self._ref("riskScores", score.sensor_id).set({
            "sensorId": score.sensor_id,
            "riskScore": score.risk_score,
            "leakProbability": score.leak_probability,
            "blockageProbability": score.blockage_probability,
            "factors": list(score.factors),
            "lastAnalyzedAt": score.last_analyzed_at,
        })

    @_firebase_call
    def get_risk_score(self, sensor_id):
        entry = self._ref("riskScores", sensor_id).get()
        return _risk_from_entry(entry) if entry else None

    @_firebase_call
    def list_risk_scores(self):
        data = self._ref("riskScores").get() or {}
        scores = [_risk_from_entry(e) for _, e in _items(data)]
        return sorted(scores, key=lambda s: s.risk_score, reverse=True)

    # ── Sensors ──────────────────────────────────────────────────

    @_firebase_call
    def add_sensor(self, sensor):
        self._ref("sensors", sensor.id).set({
            "name": sensor.name,
            "location": sensor.location,
            "pipeType": sensor.pipe_type,
            "status": sensor.status,
            "positionX": sensor.position_x,
            "positionY": sensor.position_y,
            "description": sensor.description,
        })
        return sensor.id

    @_firebase_call
    def get_sensor(self, sensor_id):
        entry = self._ref("sensors", sensor_id).get()
        return _sensor_from_entry(sensor_id, entry) if entry else None

    @_firebase_call
    def list_sensors(self):
        data = self._ref("sensors").get() or {}
        sensors = [_sensor_from_entry(int(k), e) for k, e in _items(data)]
        return sorted(sensors, key=lambda s: s.id)

    @_firebase_call
    def set_sensor_status(self, sensor_id, status):
        self._ref("sensors", sensor_id).update({"status": status})

    # ── Alerts ───────────────────────────────────────────────────

    @_firebase_call
    def create_alert(self, alert):
        alert_id = self._ref("meta", "nextAlertId").transaction(
            lambda current: (current or 0) + 1
        )
        self._ref("alerts", alert_id).set({
            "sensorId": alert.sensor_id,
            "type": alert.type,
            "severity": alert.severity,
            "message": alert.message,
            "location": alert.location,
            "timestamp": alert.timestamp,
            "isRead": alert.is_read,
            "isResolved": alert.is_resolved,
        })
        return int(alert_id)

    @_firebase_call
    def get_alerts_since(self, since_ms):
        data = (self._ref("alerts")
                .order_by_child("timestamp")
                .start_at(since_ms)
                .get()) or {}
        alerts = [_alert_from_entry(int(k), e) for k, e in _items(data)]
        return sorted(alerts, key=lambda a: a.timestamp, reverse=True)

    @_firebase_call
    def get_latest_alert(self, sensor_id):
        data = (self._ref("alerts")
                .order_by_child("sensorId")
                .equal_to(sensor_id)
                .get()) or {}
        alerts = [_alert_from_entry(int(k), e) for k, e in _items(data)]
        if not alerts:
            return None
        return max(alerts, key=lambda a: (a.timestamp, a.id))
