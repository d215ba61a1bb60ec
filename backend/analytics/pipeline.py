"""
pipeline.py — Telemetry-to-Analysis Pipeline
=============================================

Bridges incoming sensor telemetry (gateway -> MQTT/HTTP) to the analysis
engine.  When a reading pushes a sensor into leak or blockage, the new alert
is announced on MQTT so downstream consumers (dashboards, notification
workers) can react without polling.

Flow:
    telemetry arrives -> process_incoming_telemetry() called
    -> normalize + store reading -> analyze_window()
    -> if a new alert was raised:
       -> publish MQTT: sps/alerts { alertId, sensorId, type, severity, ... }
"""

import json
import logging
from datetime import datetime
from typing import Optional

import paho.mqtt.client as mqtt

from . import config
from .engine import AnalysisEngine
from .models import Reading, WindowAnalysis
from .store import StoreError
from .utils import now_ms, validate_record

logger = logging.getLogger("analytics.pipeline")


class AlertPublisher:
    """
    Publishes alert notifications to the MQTT broker.

    The broker connection is opened on first publish.  Connection or publish
    failures are logged and swallowed: alert delivery over MQTT is
    best-effort, the alert itself is already persisted in the store.
    """

    def __init__(self, host: str = None, port: int = None, topic: str = None,
                 client: mqtt.Client = None):
        self.host = host or config.MQTT_BROKER_HOST
        self.port = port or config.MQTT_BROKER_PORT
        self.topic = topic or config.MQTT_ALERT_TOPIC
        self._client = client

    def _get_client(self) -> Optional[mqtt.Client]:
        """Get or create the MQTT client.  Returns None if the broker is unreachable."""
        if self._client is not None:
            return self._client

        try:
            client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2,
                                 client_id=config.MQTT_CLIENT_ID)
            client.connect(self.host, self.port, 60)
            client.loop_start()
            self._client = client
            logger.info(f"MQTT client connected to {self.host}:{self.port}")
            return client
        except (OSError, ValueError) as e:
            logger.error(f"MQTT connection failed: {e}")
            return None

    def publish_alert(self, analysis: WindowAnalysis, location: str = None) -> bool:
        """
        Publish one alert notification.

        Args:
            analysis: Analysis result carrying the new alert id.
            location: Sensor location, if known.

        Returns:
            True if the message was handed to the MQTT client.
        """
        client = self._get_client()
        if client is None:
            logger.warning("Cannot publish alert — no MQTT client")
            return False

        payload = {
            "alertId": analysis.alert_id,
            "sensorId": analysis.sensor_id,
            "type": analysis.status,
            "severity": analysis.severity,
            "confidence": analysis.confidence,
            "factors": analysis.factors,
            "message": analysis.message,
            "location": location,
            "timestamp": now_ms(),
            "source": "sps-analytics",
        }

        try:
            client.publish(self.topic, json.dumps(payload), qos=1)
            logger.warning(f"ALERT published: topic={self.topic} "
                           f"payload={json.dumps(payload)}")
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Failed to publish alert: {e}")
            return False


def normalize_telemetry(data: dict) -> Reading:
    """
    Convert a raw telemetry payload to a Reading.

    Gateway payloads use camelCase keys: sensorId, flowRate (×100),
    pressure (×100), optional temperature (×100) and timestamp (ms epoch or
    ISO-8601 string; defaults to now).

    Raises:
        ValueError: If a required field is missing or not numeric.
    """
    if not validate_record(data):
        raise ValueError("Telemetry requires numeric sensorId, flowRate and pressure")

    ts = data.get("timestamp")
    if ts is None:
        timestamp = now_ms()
    elif isinstance(ts, str) and not ts.strip().isdigit():
        parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        timestamp = int(parsed.timestamp() * 1000)
    else:
        timestamp = int(float(ts))

    temperature = data.get("temperature")
    return Reading(
        sensor_id=int(data["sensorId"]),
        flow_rate=int(round(float(data["flowRate"]))),
        pressure=int(round(float(data["pressure"]))),
        temperature=int(round(float(temperature))) if temperature is not None else None,
        timestamp=timestamp,
    )


class TelemetryPipeline:
    """
    Stores each reading and re-analyzes its sensor.

    Attributes:
        engine: AnalysisEngine doing the work.
        publisher: AlertPublisher, or None to disable MQTT announcements.
    """

    def __init__(self, engine: AnalysisEngine, publisher: AlertPublisher = None):
        self.engine = engine
        self.publisher = publisher

    def process_incoming_telemetry(self, data: dict) -> dict:
        """
        Main entry point: process one telemetry payload.

        Args:
            data: Raw telemetry dict.

        Returns:
            Decision dict:
                status:   "processed" or "error"
                analysis: WindowAnalysis dict (when processed)
                error:    message (when the store failed)

        Raises:
            ValueError: If the payload is malformed.
        """
        reading = normalize_telemetry(data)
        logger.debug(f"Processing telemetry: {reading}")

        try:
            self.engine.ingest_reading(reading)
            analysis = self.engine.analyze_window(reading.sensor_id)
        except StoreError as e:
            # Caller keeps its last known status for the sensor
            logger.error(f"Pipeline store failure for sensor "
                         f"{reading.sensor_id}: {e}")
            return {"status": "error", "error": str(e)}

        logger.info(f"Reading processed: sensor={reading.sensor_id} "
                    f"state={analysis.status} confidence={analysis.confidence}")

        if analysis.alert_id is not None and self.publisher is not None:
            try:
                sensor = self.engine.store.get_sensor(reading.sensor_id)
            except StoreError as e:
                # Reading and alert are already stored; announce without location
                logger.warning(f"Sensor lookup failed for alert "
                               f"#{analysis.alert_id}: {e}")
                sensor = None
            self.publisher.publish_alert(
                analysis, location=sensor.location if sensor else None
            )

        return {"status": "processed", "analysis": analysis.to_dict()}
