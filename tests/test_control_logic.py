"""Tests for explicit sensor state transitions."""

import threading

from backend.analytics.models import ACTIVE, LEAK, OFFLINE, WARNING

from conftest import BRANCH_SENSOR, MAIN_SENSOR, NOW_MS, SECONDARY_SENSOR


class TestSimulateLeak:

    def test_targeted_sensor(self, engine, store):
        alert = engine.simulate_leak(SECONDARY_SENSOR)

        assert store.get_sensor(SECONDARY_SENSOR).status == LEAK
        assert alert.id is not None
        assert alert.type == "leak"
        assert alert.severity == "high"
        assert alert.message == "Leak detected in Secondary Pipe"
        assert alert.location == "Ground floor – Bathroom"
        assert alert.timestamp == NOW_MS
        assert [a.id for a in store.get_alerts_since(0)] == [alert.id]

    def test_random_sensor_is_an_active_one(self, engine, store):
        store.set_sensor_status(MAIN_SENSOR, LEAK)
        store.set_sensor_status(SECONDARY_SENSOR, OFFLINE)

        alert = engine.simulate_leak()

        assert alert.sensor_id == BRANCH_SENSOR
        assert store.get_sensor(BRANCH_SENSOR).status == LEAK

    def test_random_target_waits_for_sensor_lock(self, engine, store):
        store.set_sensor_status(MAIN_SENSOR, LEAK)
        store.set_sensor_status(SECONDARY_SENSOR, OFFLINE)
        results = []
        worker = threading.Thread(target=lambda: results.append(engine.simulate_leak()))

        with engine._sensor_lock(BRANCH_SENSOR):
            worker.start()
            worker.join(0.2)
            blocked = worker.is_alive()
            status_while_locked = store.get_sensor(BRANCH_SENSOR).status
        worker.join(2)

        assert blocked is True
        assert status_while_locked == ACTIVE
        assert results[0].sensor_id == BRANCH_SENSOR
        assert store.get_sensor(BRANCH_SENSOR).status == LEAK

    def test_no_active_sensor_left(self, engine, store):
        for sensor_id in (MAIN_SENSOR, SECONDARY_SENSOR, BRANCH_SENSOR):
            store.set_sensor_status(sensor_id, WARNING)

        assert engine.simulate_leak() is None
        assert store.get_alerts_since(0) == []

    def test_unknown_sensor(self, engine, store):
        assert engine.simulate_leak(99) is None
        assert store.get_alerts_since(0) == []


class TestReset:

    def test_reset_single_sensor(self, engine, store):
        engine.simulate_leak(MAIN_SENSOR)

        assert engine.reset_sensor(MAIN_SENSOR) is True
        assert store.get_sensor(MAIN_SENSOR).status == ACTIVE

    def test_reset_unknown_sensor(self, engine):
        assert engine.reset_sensor(99) is False

    def test_reset_all(self, engine, store):
        store.set_sensor_status(MAIN_SENSOR, LEAK)
        store.set_sensor_status(SECONDARY_SENSOR, WARNING)
        store.set_sensor_status(BRANCH_SENSOR, OFFLINE)

        assert engine.reset_all() == 3
        assert {s.status for s in store.list_sensors()} == {ACTIVE}

    def test_reset_keeps_alert_history(self, engine, store):
        engine.simulate_leak(MAIN_SENSOR)
        engine.reset_sensor(MAIN_SENSOR)

        assert len(store.get_alerts_since(0)) == 1


class TestMarkOffline:

    def test_mark_offline(self, engine, store):
        assert engine.mark_offline(MAIN_SENSOR) is True
        assert store.get_sensor(MAIN_SENSOR).status == OFFLINE

    def test_mark_unknown_offline(self, engine):
        assert engine.mark_offline(99) is False
