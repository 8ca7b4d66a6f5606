"""Tests for the detector: end-to-end scoring through state and fusion."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from conftest import T0, make_raw, make_training_records

from anomaly_service.core.errors import InvalidSample, OutOfOrderSample
from anomaly_service.core.fusion import AUTO_ESCALATE


def test_panic_always_critical(detector):
    for i, overrides in enumerate([{}, {"speed": 0.0}, {"deviationMeters": 3000.0}]):
        result = detector.predict(make_raw(f"panic-{i}", panic_button_pressed=True, **overrides))
        assert result.is_anomaly is True
        assert result.severity == 4
        assert result.anomaly_type == "distress_pattern"
        assert AUTO_ESCALATE in result.actions_taken


def test_calm_trail_is_normal(detector):
    for i in range(10):
        result = detector.predict(make_raw(seconds=i * 30))
    assert result.is_anomaly is False
    assert result.anomaly_type == "none"
    assert result.details["model_not_loaded"] is True


def test_calm_trail_is_normal_with_model(detector, training):
    training.train(make_training_records(200))
    for i in range(10):
        result = detector.predict(make_raw(seconds=i * 30, speed=5.0, deviationMeters=20.0,
                                           accelerometer_magnitude=1.1, location_risk_score=1.5))
    assert result.is_anomaly is False
    assert "model_not_loaded" not in result.details
    assert result.ml_based_score < 0.5


def test_speed_below_cutoff_is_normal(detector):
    result = detector.predict(make_raw(speed=150.0))
    assert result.rule_based_score > 0
    assert result.is_anomaly is False
    assert result.anomaly_type == "none"
    assert result.details["rules_fired"] == ["speed_anomaly"]


def test_speed_scenario(detector):
    result = detector.predict(make_raw(speed=230.0))
    assert result.is_anomaly is True
    assert result.anomaly_type == "speed_anomaly"


def test_standing_still_is_normal(detector):
    detector.predict(make_raw(seconds=0, speed=4.0))
    result = detector.predict(make_raw(seconds=900, speed=0.0))
    assert result.is_anomaly is False
    assert result.anomaly_type == "none"
    assert result.details["rules_fired"] == ["stopped"]


def test_deviation_monotonic_end_to_end(detector):
    scores = []
    for i, deviation in enumerate(range(0, 3001, 250)):
        result = detector.predict(make_raw(f"dev-{i}", deviationMeters=float(deviation)))
        scores.append(result.rule_based_score)
    assert scores == sorted(scores)


def test_out_of_order_rejected(detector):
    detector.predict(make_raw(seconds=100))
    with pytest.raises(OutOfOrderSample):
        detector.predict(make_raw(seconds=90))
    history = detector.get_history("tourist-001")
    assert len(history) == 1
    assert history[0].timestamp.second == 40


def test_invalid_sample_rejected_before_state(detector):
    with pytest.raises(InvalidSample):
        detector.predict(make_raw(lat=120.0))
    assert detector.get_history("tourist-001") == []
    assert detector.get_statistics()["total_tourists_monitored"] == 0


def test_bounded_history(detector, config):
    capacity = config.store.history_capacity
    for i in range(capacity + 50):
        detector.predict(make_raw(seconds=i))
    history = detector.get_history("tourist-001")
    assert len(history) == capacity
    # Most recent first; the oldest 50 were evicted.
    assert history[0].timestamp == T0 + timedelta(seconds=capacity + 49)
    assert history[-1].timestamp == T0 + timedelta(seconds=50)


def test_derives_points_and_dt(detector):
    for i in range(3):
        raw = make_raw(seconds=i * 60)
        del raw["points_last_5m"]
        result = detector.predict(raw)
    state_sample = detector._store.get("tourist-001").last_sample
    assert state_sample.points_last_5m == 3
    assert state_sample.dt_s == 60.0
    assert result.is_anomaly is False


def test_streak_escalation(detector):
    severities = []
    for i in range(5):
        result = detector.predict(make_raw(seconds=i * 30, deviationMeters=2000.0))
        severities.append(result.severity)
    assert severities[:3] == [2, 2, 2]
    assert severities[3:] == [3, 3]


def test_inactivity_end_to_end(detector):
    detector.predict(make_raw(seconds=0, speed=5.0))
    result = detector.predict(make_raw(seconds=4000, speed=0.0, points_last_5m=1))
    assert result.anomaly_type == "inactivity"
    assert result.is_anomaly is True


def test_creeping_tourist_goes_inactive(detector):
    detector.predict(make_raw(seconds=0, speed=4.0))
    for s in range(600, 4800, 600):
        result = detector.predict(make_raw(seconds=s, speed=0.8, points_last_5m=1))
    assert result.anomaly_type == "inactivity"
    assert result.is_anomaly is True


def test_reads_are_idempotent(detector):
    detector.predict(make_raw(seconds=0))
    detector.predict(make_raw(seconds=30, deviationMeters=1500.0))
    assert detector.get_history("tourist-001") == detector.get_history("tourist-001")
    assert detector.get_statistics() == detector.get_statistics()


def test_statistics_counts(detector):
    detector.predict(make_raw("a", seconds=0))
    detector.predict(make_raw("a", seconds=10))
    detector.predict(make_raw("b", seconds=0, deviationMeters=2000.0))
    stats = detector.get_statistics()
    assert stats["total_records_processed"] == 3
    assert stats["total_tourists_monitored"] == 2
    assert stats["anomalies_by_type"] == {"route_deviation": 1}
    assert stats["model_loaded"] is False


def test_batch_reports_errors_by_index(detector):
    outcome = detector.batch_predict([
        make_raw("a", seconds=0),
        make_raw("a", lat=500.0),
        make_raw("b", seconds=0, panic_button_pressed=True),
        "not a sample",
    ])
    assert outcome["processed"] == 2
    assert [e["index"] for e in outcome["errors"]] == [1, 3]
    assert all(e["error"] == "invalid_sample" for e in outcome["errors"])
    assert [r.tourist_id for r in outcome["results"]] == ["a", "b"]


def test_batch_survives_oversized_number(detector):
    outcome = detector.batch_predict([make_raw("a"), make_raw("x", lat=10**400)])
    assert outcome["processed"] == 1
    assert outcome["errors"][0]["index"] == 1
    assert outcome["errors"][0]["error"] == "invalid_sample"
    with pytest.raises(InvalidSample):
        detector.predict(make_raw(speed=10**400))


def test_batch_orders_same_tourist_by_timestamp(detector):
    outcome = detector.batch_predict([make_raw(seconds=20), make_raw(seconds=10)])
    assert outcome["processed"] == 2
    assert outcome["errors"] == []
    history = detector.get_history("tourist-001")
    assert len(history) == 2
    assert history[0].timestamp > history[1].timestamp


def test_batch_stale_against_existing_state(detector):
    detector.predict(make_raw(seconds=100))
    outcome = detector.batch_predict([make_raw(seconds=50), make_raw(seconds=150)])
    assert outcome["processed"] == 1
    assert outcome["errors"][0]["index"] == 0
    assert outcome["errors"][0]["error"] == "out_of_order"


def test_batch_many_tourists_in_parallel(detector):
    items = [make_raw(f"t-{n}", seconds=s) for s in range(0, 300, 30) for n in range(20)]
    outcome = detector.batch_predict(items)
    assert outcome["processed"] == 200
    for n in range(20):
        assert len(detector.get_history(f"t-{n}")) == 10


def test_concurrent_predicts_for_one_tourist(detector):
    barrier = threading.Barrier(6)
    errors = []

    def worker():
        barrier.wait()
        for _ in range(20):
            try:
                detector.predict(make_raw(seconds=0))
            except Exception as exc:  # collected for the assertion below
                errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(detector.get_history("tourist-001")) == 120
    assert detector.get_statistics()["total_records_processed"] == 120
