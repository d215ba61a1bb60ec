"""Tests for the Flask HTTP service."""

import pytest

from backend.analytics.engine import AnalysisEngine
from backend.analytics.service import create_app
from backend.analytics.store import InMemoryStore, StoreUnavailableError

from conftest import MAIN_SENSOR, NOW_MS, SECONDARY_SENSOR, add_readings, fixed_clock


class DownStore(InMemoryStore):

    def get_sensor(self, sensor_id):
        raise StoreUnavailableError("connection refused")

    def add_reading(self, reading):
        raise StoreUnavailableError("connection refused")


@pytest.fixture
def client(engine):
    app = create_app(engine)
    app.config["TESTING"] = True
    return app.test_client()


class TestEndpoints:

    def test_health(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "OK"

    def test_post_reading(self, client, store):
        resp = client.post("/readings", json={
            "sensorId": MAIN_SENSOR, "flowRate": 1500, "pressure": 4500,
            "timestamp": NOW_MS,
        })

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "processed"
        assert len(store.get_recent_readings(MAIN_SENSOR, 10)) == 1

    def test_post_malformed_reading(self, client):
        resp = client.post("/readings", json={"sensorId": MAIN_SENSOR})

        assert resp.status_code == 400

    def test_post_without_body(self, client):
        resp = client.post("/readings", data="", content_type="application/json")

        assert resp.status_code == 400

    def test_analysis(self, client, store):
        add_readings(store, MAIN_SENSOR, [1500] * 5, pressure=1800)

        resp = client.get(f"/sensors/{MAIN_SENSOR}/analysis?window=5")

        body = resp.get_json()
        assert resp.status_code == 200
        assert body["status"] == "leak"
        assert "low_pressure" in body["factors"]

    def test_analysis_rejects_bad_window(self, client):
        resp = client.get(f"/sensors/{MAIN_SENSOR}/analysis?window=0")

        assert resp.status_code == 400

    def test_anomaly_requires_flow(self, client):
        assert client.get(f"/sensors/{MAIN_SENSOR}/anomaly").status_code == 400

        resp = client.get(f"/sensors/{MAIN_SENSOR}/anomaly?flow=1500")
        assert resp.status_code == 200
        assert resp.get_json()["is_anomaly"] is False

    def test_learn(self, client, store):
        add_readings(store, MAIN_SENSOR, [1500] * 12, step_ms=1000)

        resp = client.post(f"/sensors/{MAIN_SENSOR}/learn")

        assert resp.status_code == 200
        assert resp.get_json()["bucketsUpdated"] >= 1

    def test_risk(self, client):
        resp = client.get(f"/sensors/{MAIN_SENSOR}/risk")

        assert resp.status_code == 200
        assert resp.get_json()["risk_score"] == 5

    def test_risk_unknown_sensor(self, client):
        assert client.get("/sensors/99/risk").status_code == 404

    def test_classification(self, client, store):
        add_readings(store, MAIN_SENSOR, [6000] * 5, pressure=1500)

        resp = client.get(f"/sensors/{MAIN_SENSOR}/classification")

        assert resp.get_json()["type"] == "burst"

    def test_comparison(self, client):
        resp = client.get("/comparison")

        assert resp.status_code == 200
        assert resp.get_json()["is_system_wide_issue"] is False

    def test_predictions_and_health_report(self, client):
        client.post(f"/sensors/{SECONDARY_SENSOR}/simulate-leak")

        predictions = client.get("/predictions").get_json()
        report = client.get("/health-report").get_json()

        assert predictions[0]["sensor_id"] == SECONDARY_SENSOR
        assert report["leak_count"] == 1
        assert report["overall_health"] == 78

    def test_simulate_and_reset(self, client, store):
        resp = client.post("/simulate-leak")
        alert = resp.get_json()["alert"]
        assert resp.status_code == 200
        assert store.get_sensor(alert["sensor_id"]).status == "leak"

        resp = client.post(f"/sensors/{alert['sensor_id']}/reset")
        assert resp.get_json() == {"success": True, "resetCount": 1}
        assert store.get_sensor(alert["sensor_id"]).status == "active"

        assert client.post("/reset").get_json()["resetCount"] == 3

    def test_simulate_unknown_sensor(self, client):
        assert client.post("/sensors/99/simulate-leak").status_code == 404
        assert client.post("/sensors/99/reset").status_code == 404


class TestStoreOutage:

    @pytest.fixture
    def down_client(self):
        engine = AnalysisEngine(DownStore(), clock=fixed_clock)
        app = create_app(engine)
        app.config["TESTING"] = True
        yield app.test_client()
        engine.shutdown()

    def test_analysis_returns_503(self, down_client):
        resp = down_client.get(f"/sensors/{MAIN_SENSOR}/analysis")

        assert resp.status_code == 503
        assert "error" in resp.get_json()

    def test_ingest_returns_503(self, down_client):
        resp = down_client.post("/readings", json={
            "sensorId": MAIN_SENSOR, "flowRate": 1500, "pressure": 4500,
        })

        assert resp.status_code == 503
        assert resp.get_json()["status"] == "error"
