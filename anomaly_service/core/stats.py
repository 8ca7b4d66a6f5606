"""Service statistics and active-tourist tracking.

Tracks in-memory counters and a sliding window of recently reporting tourists.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass


@dataclass
class TouristActivity:
    """Tracks a single tourist's recent reporting activity."""
    last_seen: float          # time.monotonic() timestamp
    reporting_mode: str       # "realtime" or "batch"
    samples_sent: int = 0


class ServiceStats:
    """Thread-safe service statistics with active-tourist tracking.

    A tourist is "active" if a sample for them arrived within
    ``active_window_seconds``. Samples from /predict count as real-time,
    samples from /batch-predict as batch.
    """

    def __init__(self, active_window_seconds: float = 300.0) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._active_window = active_window_seconds

        # Counters
        self.samples_received: int = 0
        self.samples_processed: int = 0
        self.samples_invalid: int = 0
        self.samples_out_of_order: int = 0
        self.batches_received: int = 0
        self.anomalies_detected: int = 0
        self.actions_dispatched: int = 0
        self.storage_errors: int = 0
        self.notifier_errors: int = 0
        self.queue_depth: int = 0
        self.queue_max_depth: int = 0
        self.anomalies_by_type: dict[str, int] = {}

        # Tourist tracking: tourist_id → TouristActivity
        self._tourists: dict[str, TouristActivity] = {}

    def _touch(self, tourist_id: str, mode: str, now: float) -> None:
        """Caller holds lock."""
        if tourist_id in self._tourists:
            activity = self._tourists[tourist_id]
            activity.last_seen = now
            activity.reporting_mode = mode
            activity.samples_sent += 1
        else:
            self._tourists[tourist_id] = TouristActivity(
                last_seen=now, reporting_mode=mode, samples_sent=1,
            )

    def record_received(self, count: int = 1, *, is_batch: bool = False) -> None:
        with self._lock:
            self.samples_received += count
            if is_batch:
                self.batches_received += 1

    def record_processed(self, tourist_id: str, anomaly_type: str | None,
                         *, is_batch: bool = False) -> None:
        """Record an accepted sample; ``anomaly_type`` is None for normal ones."""
        now = time.monotonic()
        with self._lock:
            self.samples_processed += 1
            if anomaly_type is not None:
                self.anomalies_detected += 1
                self.anomalies_by_type[anomaly_type] = self.anomalies_by_type.get(anomaly_type, 0) + 1
            self._touch(tourist_id, "batch" if is_batch else "realtime", now)

    def record_invalid(self, count: int = 1) -> None:
        with self._lock:
            self.samples_invalid += count

    def record_out_of_order(self, count: int = 1) -> None:
        with self._lock:
            self.samples_out_of_order += count

    def record_actions(self, count: int) -> None:
        with self._lock:
            self.actions_dispatched += count

    def record_storage_error(self) -> None:
        with self._lock:
            self.storage_errors += 1

    def record_notifier_error(self) -> None:
        with self._lock:
            self.notifier_errors += 1

    def update_queue_depth(self, depth: int) -> None:
        with self._lock:
            self.queue_depth = depth
            if depth > self.queue_max_depth:
                self.queue_max_depth = depth

    def _prune_stale_tourists(self, now: float) -> None:
        """Remove tourists not seen within the active window. Caller holds lock."""
        cutoff = now - self._active_window
        stale = [tid for tid, act in self._tourists.items() if act.last_seen < cutoff]
        for tid in stale:
            del self._tourists[tid]

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        now_mono = time.monotonic()
        with self._lock:
            self._prune_stale_tourists(now_mono)

            active_realtime = sum(
                1 for act in self._tourists.values()
                if act.reporting_mode == "realtime"
            )
            active_batch = sum(
                1 for act in self._tourists.values()
                if act.reporting_mode == "batch"
            )

            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "samples_received": self.samples_received,
                "samples_processed": self.samples_processed,
                "samples_invalid": self.samples_invalid,
                "samples_out_of_order": self.samples_out_of_order,
                "batches_received": self.batches_received,
                "anomalies_detected": self.anomalies_detected,
                "anomalies_by_type": dict(self.anomalies_by_type),
                "actions_dispatched": self.actions_dispatched,
                "storage_errors": self.storage_errors,
                "notifier_errors": self.notifier_errors,
                "queue_depth": self.queue_depth,
                "queue_max_depth_ever": self.queue_max_depth,
                "active_tourists": {
                    "total": len(self._tourists),
                    "realtime": active_realtime,
                    "batch": active_batch,
                    "window_seconds": self._active_window,
                },
            }
