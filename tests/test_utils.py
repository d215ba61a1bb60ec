"""Tests for shared helpers, feature extraction and the learning job."""

import math
from datetime import datetime

import pytest

from backend.analytics.feature_engineering import coefficient_of_variation, extract_features
from backend.analytics.learn import run_learning_pass
from backend.analytics.models import Reading
from backend.analytics.preprocessing import add_time_buckets, prepare_readings
from backend.analytics.utils import clamp_score, time_bucket, validate_record

from conftest import MAIN_SENSOR, NOW_MS, add_readings


class TestClampScore:

    @pytest.mark.parametrize("value, expected", [
        (-20, 0), (0, 0), (42.4, 42), (42.6, 43), (100, 100), (250, 100),
        (math.nan, 0), (math.inf, 0), (-math.inf, 0), (None, 0),
    ])
    def test_clamp(self, value, expected):
        assert clamp_score(value) == expected


class TestTimeBucket:

    def test_sunday_is_zero(self):
        sunday = int(datetime(2023, 11, 12, 10, 30).timestamp() * 1000)

        assert time_bucket(sunday) == (10, 0)

    def test_saturday_is_six(self):
        saturday = int(datetime(2023, 11, 18, 23, 59).timestamp() * 1000)

        assert time_bucket(saturday) == (23, 6)


class TestValidateRecord:

    def test_valid(self):
        assert validate_record({"sensorId": 1, "flowRate": "15.5", "pressure": 4500})

    def test_missing_or_non_numeric(self):
        assert not validate_record({"sensorId": 1, "flowRate": 15})
        assert not validate_record({"sensorId": "a", "flowRate": 15, "pressure": 1})


class TestFeatures:

    def test_population_statistics(self):
        readings = [Reading(MAIN_SENSOR, f, 4000 + i, NOW_MS + i)
                    for i, f in enumerate([1000, 2000, 3000])]

        features = extract_features(list(reversed(readings)))

        assert features.count == 3
        assert features.flow_mean == 2000
        assert features.flow_variance == pytest.approx(666_666.667, rel=1e-6)
        assert features.pressure_mean == 4001
        assert features.latest_flow == 3000
        assert features.flow_cv == pytest.approx(features.flow_std / 2000)

    def test_single_reading_has_zero_spread(self):
        features = extract_features([Reading(MAIN_SENSOR, 1500, 4000, NOW_MS)])

        assert features.flow_std == 0
        assert features.flow_cv == 0

    def test_empty(self):
        assert extract_features([]) is None

    def test_zero_mean_cv_is_not_evaluated(self):
        assert coefficient_of_variation(0.0, 0.0) is None


class TestPreprocessing:

    def test_time_bucket_columns(self):
        df = add_time_buckets(prepare_readings([Reading(MAIN_SENSOR, 1, 1, NOW_MS)]))

        assert (df.loc[0, "hour_of_day"], df.loc[0, "day_of_week"]) == time_bucket(NOW_MS)

    def test_empty_input(self):
        assert prepare_readings([]).empty


class TestLearningPass:

    def test_learns_and_scores(self, engine, store):
        add_readings(store, MAIN_SENSOR, [1500] * 12, step_ms=1000)

        summary = run_learning_pass(engine)

        assert summary[MAIN_SENSOR] >= 1
        assert store.get_risk_score(MAIN_SENSOR) is not None
