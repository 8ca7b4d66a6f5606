"""Tests for ServiceStats and active tourist tracking."""

from __future__ import annotations

import time

from anomaly_service.core.stats import ServiceStats


def test_initial_stats():
    stats = ServiceStats()
    snap = stats.snapshot()
    assert snap["samples_received"] == 0
    assert snap["anomalies_by_type"] == {}
    assert snap["active_tourists"]["total"] == 0
    assert snap["active_tourists"]["realtime"] == 0
    assert snap["active_tourists"]["batch"] == 0


def test_record_realtime_samples():
    stats = ServiceStats()
    stats.record_received()
    stats.record_processed("tourist-a", None)
    stats.record_received()
    stats.record_processed("tourist-b", "route_deviation")

    snap = stats.snapshot()
    assert snap["samples_received"] == 2
    assert snap["samples_processed"] == 2
    assert snap["anomalies_detected"] == 1
    assert snap["anomalies_by_type"] == {"route_deviation": 1}
    assert snap["active_tourists"]["total"] == 2
    assert snap["active_tourists"]["realtime"] == 2
    assert snap["active_tourists"]["batch"] == 0


def test_record_batch():
    stats = ServiceStats()
    stats.record_received(10, is_batch=True)
    for _ in range(10):
        stats.record_processed("tourist-c", None, is_batch=True)

    snap = stats.snapshot()
    assert snap["samples_received"] == 10
    assert snap["batches_received"] == 1
    assert snap["active_tourists"]["total"] == 1
    assert snap["active_tourists"]["realtime"] == 0
    assert snap["active_tourists"]["batch"] == 1


def test_tourist_mode_updates():
    """A tourist whose phone switches from batch upload to real-time is tracked correctly."""
    stats = ServiceStats()
    stats.record_processed("tourist-d", None, is_batch=True)

    snap = stats.snapshot()
    assert snap["active_tourists"]["batch"] == 1
    assert snap["active_tourists"]["realtime"] == 0

    stats.record_processed("tourist-d", None)

    snap = stats.snapshot()
    assert snap["active_tourists"]["batch"] == 0
    assert snap["active_tourists"]["realtime"] == 1
    assert snap["active_tourists"]["total"] == 1


def test_stale_tourists_pruned():
    stats = ServiceStats(active_window_seconds=0.1)
    stats.record_processed("tourist-e", None)

    snap = stats.snapshot()
    assert snap["active_tourists"]["total"] == 1

    time.sleep(0.15)

    snap = stats.snapshot()
    assert snap["active_tourists"]["total"] == 0
    # Counters are not windowed.
    assert snap["samples_processed"] == 1


def test_queue_depth_tracking():
    stats = ServiceStats()
    stats.update_queue_depth(50)
    stats.update_queue_depth(100)
    stats.update_queue_depth(30)

    snap = stats.snapshot()
    assert snap["queue_depth"] == 30
    assert snap["queue_max_depth_ever"] == 100


def test_rejection_and_error_counters():
    stats = ServiceStats()
    stats.record_invalid(2)
    stats.record_out_of_order()
    stats.record_actions(3)
    stats.record_storage_error()
    stats.record_notifier_error()

    snap = stats.snapshot()
    assert snap["samples_invalid"] == 2
    assert snap["samples_out_of_order"] == 1
    assert snap["actions_dispatched"] == 3
    assert snap["storage_errors"] == 1
    assert snap["notifier_errors"] == 1


def test_anomalies_by_type_accumulate():
    stats = ServiceStats()
    for anomaly_type in ["fall_detected", "fall_detected", "inactivity", None]:
        stats.record_processed("tourist-f", anomaly_type)

    snap = stats.snapshot()
    assert snap["anomalies_detected"] == 3
    assert snap["anomalies_by_type"] == {"fall_detected": 2, "inactivity": 1}
