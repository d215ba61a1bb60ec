"""Pytest configuration and shared fixtures."""

import pytest

from backend.analytics.engine import AnalysisEngine
from backend.analytics.models import FlowPattern, Reading, Sensor
from backend.analytics.store import InMemoryStore
from backend.analytics.utils import time_bucket

# Fixed wall clock for every test: 2023-11-14 22:13:20 UTC
NOW_MS = 1_700_000_000_000

MAIN_SENSOR = 1
SECONDARY_SENSOR = 2
BRANCH_SENSOR = 3


def fixed_clock():
    return NOW_MS


def add_readings(store, sensor_id, flows, pressure=4500, pressures=None,
                 end_ms=NOW_MS, step_ms=30_000):
    """
    Add one reading per flow value, newest at ``end_ms``, spaced ``step_ms`` apart.

    ``pressures`` overrides the constant ``pressure`` per reading.
    """
    count = len(flows)
    for i, flow in enumerate(flows):
        store.add_reading(Reading(
            sensor_id=sensor_id,
            flow_rate=flow,
            pressure=pressures[i] if pressures is not None else pressure,
            timestamp=end_ms - (count - 1 - i) * step_ms,
        ))


def add_baseline(store, sensor_id, avg, std, samples=20, at_ms=NOW_MS):
    """Store a learned pattern bucket for the hour/weekday containing ``at_ms``."""
    hour, weekday = time_bucket(at_ms)
    return store.upsert_pattern_bucket(FlowPattern(
        sensor_id=sensor_id,
        hour_of_day=hour,
        day_of_week=weekday,
        avg_flow_rate=avg,
        min_flow_rate=avg - 3 * std,
        max_flow_rate=avg + 3 * std,
        std_deviation=std,
        sample_count=samples,
    ))


def seed_demo_sensors(s):
    """Add the three demo pipes to a store and return it."""
    s.add_sensor(Sensor(id=MAIN_SENSOR, name="Main Pipe",
                        location="Upper floor – Kitchen", pipe_type="main",
                        position_x=30, position_y=25,
                        description="Main water supply pipe"))
    s.add_sensor(Sensor(id=SECONDARY_SENSOR, name="Secondary Pipe",
                        location="Ground floor – Bathroom", pipe_type="secondary",
                        position_x=70, position_y=45,
                        description="Secondary distribution pipe"))
    s.add_sensor(Sensor(id=BRANCH_SENSOR, name="Branch Pipe",
                        location="Basement – Utility Room", pipe_type="branch",
                        position_x=50, position_y=75,
                        description="Branch pipe to utility room"))
    return s


@pytest.fixture
def store():
    """In-memory store seeded with the three demo pipes."""
    return seed_demo_sensors(InMemoryStore())


@pytest.fixture
def engine(store):
    """AnalysisEngine on the seeded store with a fixed clock."""
    e = AnalysisEngine(store, clock=fixed_clock, store_timeout=2)
    yield e
    e.shutdown()
