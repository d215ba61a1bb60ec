"""
service.py — Pipe Analytics HTTP Service (Flask)
=================================================

Lightweight HTTP service exposing the analysis engine to the application
layer (dashboard, alert views, gateway bridge).

Endpoints:
    GET  /health                          — Service health check
    POST /readings                        — Ingest one telemetry record
    GET  /sensors/<id>/analysis?window=5  — Windowed analysis
    GET  /sensors/<id>/anomaly?flow=N     — Baseline check for a flow value
    POST /sensors/<id>/learn              — Learn flow patterns now
    GET  /sensors/<id>/risk               — Score risk (404 if unknown)
    GET  /sensors/<id>/classification     — Leak archetype
    POST /sensors/<id>/simulate-leak      — Force a leak (ops/demo hook)
    POST /sensors/<id>/reset              — Explicit reset to active
    POST /simulate-leak                   — Force a leak on a random sensor
    POST /reset                           — Reset every sensor
    GET  /comparison                      — Cross-sensor verdict
    GET  /predictions                     — Ranked risk list
    GET  /health-report                   — System health report

Run:
    python -m backend.analytics.service
    # Starts on port 5050 by default (configurable via SPS_SERVICE_PORT)
"""

import os
import logging

from flask import Flask, jsonify, request

from . import config
from .engine import AnalysisEngine
from .pipeline import AlertPublisher, TelemetryPipeline
from .store import InMemoryStore, StoreError, build_store
from .utils import ensure_saved_dir, setup_logging

logger = logging.getLogger("analytics.service")


def create_app(engine: AnalysisEngine, pipeline: TelemetryPipeline = None) -> Flask:
    """
    Build the Flask application around an engine.

    Args:
        engine: AnalysisEngine serving every request.
        pipeline: Ingestion pipeline.  Defaults to one without MQTT.
    """
    app = Flask(__name__)
    pipeline = pipeline or TelemetryPipeline(engine)

    @app.errorhandler(StoreError)
    def store_failure(e):
        logger.error(f"Store failure: {e}")
        return jsonify({"error": "Datastore unavailable", "detail": str(e)}), 503

    @app.errorhandler(ValueError)
    def bad_request(e):
        return jsonify({"error": str(e)}), 400

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({
            "status": "OK",
            "service": "SPS Pipe Analytics",
        })

    @app.route("/readings", methods=["POST"])
    def ingest():
        data = request.get_json(force=True, silent=True)
        if not data:
            return jsonify({"error": "No JSON body provided"}), 400

        result = pipeline.process_incoming_telemetry(data)
        if result["status"] == "error":
            return jsonify(result), 503
        return jsonify(result)

    @app.route("/sensors/<int:sensor_id>/analysis", methods=["GET"])
    def analysis(sensor_id):
        window = request.args.get("window", default=config.DEFAULT_WINDOW_MINUTES,
                                  type=float)
        return jsonify(engine.analyze_window(sensor_id, window).to_dict())

    @app.route("/sensors/<int:sensor_id>/anomaly", methods=["GET"])
    def anomaly(sensor_id):
        flow = request.args.get("flow", type=float)
        if flow is None:
            return jsonify({"error": "Query parameter 'flow' is required"}), 400
        return jsonify(engine.check_anomaly(sensor_id, flow).to_dict())

    @app.route("/sensors/<int:sensor_id>/learn", methods=["POST"])
    def learn(sensor_id):
        buckets = engine.learn_patterns(sensor_id)
        return jsonify({
            "sensorId": sensor_id,
            "bucketsUpdated": len(buckets),
            "patterns": [b.to_dict() for b in buckets],
        })

    @app.route("/sensors/<int:sensor_id>/risk", methods=["GET"])
    def risk(sensor_id):
        prediction = engine.score_risk(sensor_id)
        if prediction is None:
            return jsonify({"error": f"Sensor {sensor_id} not found"}), 404
        return jsonify(prediction.to_dict())

    @app.route("/sensors/<int:sensor_id>/classification", methods=["GET"])
    def classification(sensor_id):
        return jsonify(engine.classify_leak(sensor_id).to_dict())

    @app.route("/sensors/<int:sensor_id>/simulate-leak", methods=["POST"])
    @app.route("/simulate-leak", methods=["POST"])
    def simulate_leak(sensor_id=None):
        alert = engine.simulate_leak(sensor_id)
        if alert is None:
            return jsonify({"error": "No sensor available for a simulated leak"}), 404
        return jsonify({"alert": alert.to_dict()})

    @app.route("/sensors/<int:sensor_id>/reset", methods=["POST"])
    def reset_sensor(sensor_id):
        if not engine.reset_sensor(sensor_id):
            return jsonify({"error": f"Sensor {sensor_id} not found"}), 404
        return jsonify({"success": True, "resetCount": 1})

    @app.route("/reset", methods=["POST"])
    def reset_all():
        return jsonify({"success": True, "resetCount": engine.reset_all()})

    @app.route("/comparison", methods=["GET"])
    def comparison():
        return jsonify(engine.compare_across_pipes().to_dict())

    @app.route("/predictions", methods=["GET"])
    def predictions():
        return jsonify([p.to_dict() for p in engine.rank_all()])

    @app.route("/health-report", methods=["GET"])
    def health_report():
        return jsonify(engine.generate_health_report().to_dict())

    return app


def build_engine() -> AnalysisEngine:
    """Create the engine on the configured store, restoring a memory snapshot if present."""
    store = build_store()
    if isinstance(store, InMemoryStore) and os.path.exists(config.SNAPSHOT_PATH):
        store = InMemoryStore.load_snapshot(config.SNAPSHOT_PATH)
    return AnalysisEngine(store)


if __name__ == "__main__":
    setup_logging()
    ensure_saved_dir()

    engine = build_engine()
    app = create_app(engine, TelemetryPipeline(engine, AlertPublisher()))

    logger.info(f"Starting analytics service on port {config.SERVICE_PORT}")
    app.run(host="0.0.0.0", port=config.SERVICE_PORT, debug=False)
