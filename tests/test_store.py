"""Tests for the store contract implementations."""

import time

import pytest

from backend.analytics.models import Alert, FlowPattern, Reading, RiskScore
from backend.analytics.store import (
    BoundedStore, InMemoryStore, StoreTimeoutError, build_store, merge_pattern,
)

from conftest import MAIN_SENSOR, NOW_MS, SECONDARY_SENSOR, add_readings


class SlowFirstStatusStore(InMemoryStore):
    """The first status write stalls past the caller's timeout."""

    def __init__(self):
        super().__init__()
        self.stalls_left = 1

    def set_sensor_status(self, sensor_id, status):
        if self.stalls_left:
            self.stalls_left -= 1
            time.sleep(0.4)
        super().set_sensor_status(sensor_id, status)


def _pattern(**overrides):
    values = dict(sensor_id=1, hour_of_day=8, day_of_week=1, avg_flow_rate=1500,
                  min_flow_rate=1200, max_flow_rate=1800, std_deviation=100,
                  sample_count=10)
    values.update(overrides)
    return FlowPattern(**values)


class TestMergePattern:

    def test_new_bucket_is_stored_as_is(self):
        incoming = _pattern()

        assert merge_pattern(None, incoming) == incoming

    def test_merge_rule(self):
        existing = _pattern(min_flow_rate=900, max_flow_rate=1700, sample_count=30)
        incoming = _pattern(avg_flow_rate=1600, std_deviation=80,
                            min_flow_rate=1000, max_flow_rate=2100, sample_count=12)

        merged = merge_pattern(existing, incoming)

        assert merged.avg_flow_rate == 1600
        assert merged.std_deviation == 80
        assert merged.min_flow_rate == 900
        assert merged.max_flow_rate == 2100
        assert merged.sample_count == 42


class TestInMemoryStore:

    def test_range_query_is_ascending_and_inclusive(self, store):
        add_readings(store, MAIN_SENSOR, [1, 2, 3, 4, 5], step_ms=1000)

        readings = store.get_readings_in_range(MAIN_SENSOR, NOW_MS - 3000, NOW_MS - 1000)

        assert [r.flow_rate for r in readings] == [2, 3, 4]

    def test_range_query_limit_keeps_newest(self, store):
        add_readings(store, MAIN_SENSOR, [1, 2, 3, 4, 5], step_ms=1000)

        readings = store.get_readings_in_range(MAIN_SENSOR, 0, NOW_MS, limit=2)

        assert [r.flow_rate for r in readings] == [4, 5]

    def test_out_of_order_inserts_are_sorted(self, store):
        store.add_reading(Reading(MAIN_SENSOR, 2, 4500, NOW_MS))
        store.add_reading(Reading(MAIN_SENSOR, 1, 4500, NOW_MS - 1000))

        readings = store.get_readings_in_range(MAIN_SENSOR, 0, NOW_MS)

        assert [r.flow_rate for r in readings] == [1, 2]

    def test_recent_readings_are_descending(self, store):
        add_readings(store, MAIN_SENSOR, [1, 2, 3, 4, 5])

        readings = store.get_recent_readings(MAIN_SENSOR, 3)

        assert [r.flow_rate for r in readings] == [5, 4, 3]

    def test_aggregated_flow(self, store):
        add_readings(store, MAIN_SENSOR, [100, 200, 300], pressures=[4000, 5000, 6000])
        add_readings(store, SECONDARY_SENSOR, [50], end_ms=NOW_MS - 60 * 60 * 1000)

        aggregates = store.get_aggregated_flow(5 * 60 * 1000, now_ms=NOW_MS)

        assert len(aggregates) == 1
        agg = aggregates[0]
        assert agg.sensor_id == MAIN_SENSOR
        assert agg.avg_flow == 200
        assert agg.min_flow == 100
        assert agg.max_flow == 300
        assert agg.avg_pressure == 5000
        assert agg.count == 3

    def test_returned_records_are_copies(self, store):
        sensor = store.get_sensor(MAIN_SENSOR)
        sensor.status = "leak"

        assert store.get_sensor(MAIN_SENSOR).status == "active"

    def test_unknown_sensor_status_update_is_ignored(self, store):
        store.set_sensor_status(99, "leak")

        assert store.get_sensor(99) is None

    def test_alert_ids_increase_and_newest_first(self, store):
        first = store.create_alert(Alert(MAIN_SENSOR, "leak", "high", "a", "x", NOW_MS - 10))
        second = store.create_alert(Alert(MAIN_SENSOR, "leak", "high", "b", "x", NOW_MS))

        alerts = store.get_alerts_since(NOW_MS - 10)

        assert second > first
        assert [a.id for a in alerts] == [second, first]
        assert store.get_alerts_since(NOW_MS - 5)[0].id == second

    def test_latest_alert_per_sensor(self, store):
        store.create_alert(Alert(MAIN_SENSOR, "blockage", "medium", "a", "x", NOW_MS - 10))
        latest = store.create_alert(Alert(MAIN_SENSOR, "leak", "high", "b", "x", NOW_MS))
        store.create_alert(Alert(SECONDARY_SENSOR, "leak", "high", "c", "y", NOW_MS + 5))

        assert store.get_latest_alert(MAIN_SENSOR).id == latest
        assert store.get_latest_alert(MAIN_SENSOR).type == "leak"
        assert store.get_latest_alert(99) is None

    def test_risk_scores_listed_highest_first(self, store):
        store.upsert_risk_score(RiskScore(MAIN_SENSOR, 10, 0, 0, [], NOW_MS))
        store.upsert_risk_score(RiskScore(SECONDARY_SENSOR, 60, 80, 0, ["x"], NOW_MS))

        assert [s.sensor_id for s in store.list_risk_scores()] == [SECONDARY_SENSOR, MAIN_SENSOR]

    def test_snapshot_round_trip(self, store, tmp_path):
        add_readings(store, MAIN_SENSOR, [1500] * 3)
        store.upsert_pattern_bucket(_pattern())
        store.create_alert(Alert(MAIN_SENSOR, "leak", "high", "m", "x", NOW_MS))
        path = str(tmp_path / "store.joblib")

        store.save_snapshot(path)
        restored = InMemoryStore.load_snapshot(path)

        assert restored.list_sensors() == store.list_sensors()
        assert restored.get_recent_readings(MAIN_SENSOR, 10) == \
            store.get_recent_readings(MAIN_SENSOR, 10)
        assert restored.get_pattern_buckets(1) == [_pattern()]
        # Alert ids continue after the restored ones
        assert restored.create_alert(Alert(MAIN_SENSOR, "leak", "high", "n", "x", NOW_MS)) == 2


class TestBoundedStore:

    def test_delegates_to_inner_store(self, store):
        bounded = BoundedStore(store, timeout=1)
        try:
            bounded.set_sensor_status(MAIN_SENSOR, "warning")
            assert bounded.get_sensor(MAIN_SENSOR).status == "warning"
            assert len(bounded.list_sensors()) == 3
        finally:
            bounded.shutdown()

    def test_timed_out_write_lands_before_the_next_one(self, store):
        inner = SlowFirstStatusStore()
        inner.add_sensor(store.get_sensor(MAIN_SENSOR))
        bounded = BoundedStore(inner, timeout=0.3)
        try:
            with pytest.raises(StoreTimeoutError):
                bounded.set_sensor_status(MAIN_SENSOR, "leak")
            bounded.set_sensor_status(MAIN_SENSOR, "warning")
            time.sleep(0.2)
            status = bounded.get_sensor(MAIN_SENSOR).status
        finally:
            bounded.shutdown()

        assert status == "warning"

    def test_timeout_on_one_sensor_does_not_block_another(self, store):
        inner = SlowFirstStatusStore()
        inner.add_sensor(store.get_sensor(MAIN_SENSOR))
        inner.add_sensor(store.get_sensor(SECONDARY_SENSOR))
        bounded = BoundedStore(inner, timeout=0.1)
        try:
            with pytest.raises(StoreTimeoutError):
                bounded.set_sensor_status(MAIN_SENSOR, "leak")
            bounded.set_sensor_status(SECONDARY_SENSOR, "warning")
            status = bounded.get_sensor(SECONDARY_SENSOR).status
        finally:
            bounded.shutdown()

        assert status == "warning"


class TestBuildStore:

    def test_memory_backend(self):
        assert isinstance(build_store("memory"), InMemoryStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_store("redis")
