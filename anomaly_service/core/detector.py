"""Anomaly detector — validates, scores, and records incoming telemetry.

This is the core business logic. It depends on the VerdictQueue,
VerdictStorage and Notifier protocols, not concrete implementations.
"""

from __future__ import annotations

import dataclasses
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog

from anomaly_service.core.errors import InvalidSample, OutOfOrderSample
from anomaly_service.core.fusion import FusionEngine
from anomaly_service.core.ml import MLScorer
from anomaly_service.core.models import VerdictRecord
from anomaly_service.core.rules import RuleScorer
from anomaly_service.core.telemetry import parse_sample

if TYPE_CHECKING:
    from anomaly_service.config import AppConfig
    from anomaly_service.core.models import AnomalyResult, TelemetrySample, TouristState
    from anomaly_service.core.state_store import TouristStateStore
    from anomaly_service.core.stats import ServiceStats
    from anomaly_service.core.training import TrainingService
    from anomaly_service.notify.base import Notifier
    from anomaly_service.queue.base import VerdictQueue
    from anomaly_service.storage.base import VerdictStorage

log = structlog.get_logger()

_ACTIVITY_WINDOW = timedelta(minutes=5)


class AnomalyDetector:
    """Scores telemetry samples and keeps per-tourist state current."""

    def __init__(
        self,
        config: AppConfig,
        store: TouristStateStore,
        training: TrainingService,
        stats: ServiceStats,
        queue: VerdictQueue | None = None,
        storage: VerdictStorage | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._training = training
        self._stats = stats
        self._queue = queue
        self._storage = storage
        self._notifier = notifier
        self._rules = RuleScorer(config.detection, config.store.baseline_min_samples,
                                 config.store.moving_speed_kmh)
        self._ml = MLScorer(config.store.baseline_min_samples)
        self._fusion = FusionEngine(config.fusion)
        self._pool = ThreadPoolExecutor(
            max_workers=max(1, config.limits.batch_workers),
            thread_name_prefix="batch-predict",
        )
        self._next_record_id = 1
        self._updated_at = datetime.now(timezone.utc)

    def close(self) -> None:
        self._pool.shutdown(wait=True)

    # -- scoring ------------------------------------------------------------

    def predict(self, raw: dict, *, is_batch: bool = False) -> AnomalyResult:
        """Validate and score one raw telemetry object."""
        if not is_batch:
            self._stats.record_received()
        try:
            sample = parse_sample(raw)
        except InvalidSample as exc:
            self._stats.record_invalid()
            log.info("sample_rejected", reason="invalid", error=str(exc))
            raise
        return self._score(sample, is_batch=is_batch)

    def _derive(self, sample: TelemetrySample, state: TouristState | None) -> TelemetrySample:
        """Fill dt_s and points_last_5m from state when the client omitted them."""
        changes = {}
        if sample.dt_s is None:
            if state is not None and state.last_sample is not None:
                changes["dt_s"] = (sample.timestamp - state.last_sample.timestamp).total_seconds()
            else:
                changes["dt_s"] = 0.0
        if sample.points_last_5m is None:
            count = 1
            if state is not None:
                cutoff = sample.timestamp - _ACTIVITY_WINDOW
                count += sum(1 for entry in state.history if entry.sample.timestamp > cutoff)
            changes["points_last_5m"] = count
        return dataclasses.replace(sample, **changes) if changes else sample

    def _score(self, sample: TelemetrySample, *, is_batch: bool = False) -> AnomalyResult:
        model = self._training.model
        with self._store.locked(sample.tourist_id) as state:
            if state is not None and state.last_sample is not None \
                    and sample.timestamp < state.last_sample.timestamp:
                self._stats.record_out_of_order()
                log.info("sample_rejected", reason="out_of_order",
                         tourist=sample.tourist_id[:8],
                         ts=sample.timestamp.isoformat(),
                         last_ts=state.last_sample.timestamp.isoformat())
                raise OutOfOrderSample(sample.tourist_id, sample.timestamp,
                                       state.last_sample.timestamp)

            sample = self._derive(sample, state)
            rules = self._rules.score(sample, state)
            ml_score, ml_details = self._ml.score(sample, state, model)
            streak = state.consecutive_anomaly_streak if state is not None else 0
            result = self._fusion.fuse(sample, rules, ml_score, ml_details, streak)
            self._store.apply_and_append(sample.tourist_id, sample, result)
            self._updated_at = datetime.now(timezone.utc)

        self._stats.record_processed(
            sample.tourist_id,
            result.anomaly_type if result.is_anomaly else None,
            is_batch=is_batch,
        )
        if result.is_anomaly:
            log.info("anomaly_detected", tourist=sample.tourist_id[:8],
                     type=result.anomaly_type, severity=result.severity,
                     score=round(result.anomaly_score, 3),
                     actions=list(result.actions_taken))
        return result

    def batch_predict(self, raw_items: list) -> dict:
        """Score a batch; per-item failures are reported, never raised.

        Samples are grouped by tourist and each group is applied in
        timestamp order; groups run in parallel. Results come back in input
        order, with rejected items listed under ``errors`` by index.
        """
        self._stats.record_received(len(raw_items), is_batch=True)
        errors: list[dict] = []
        groups: dict[str, list[tuple[int, TelemetrySample]]] = {}

        for index, raw in enumerate(raw_items):
            try:
                sample = parse_sample(raw)
            except InvalidSample as exc:
                self._stats.record_invalid()
                errors.append({"index": index, "error": "invalid_sample", "detail": str(exc)})
                continue
            groups.setdefault(sample.tourist_id, []).append((index, sample))

        def run_group(items: list[tuple[int, TelemetrySample]]):
            done, failed = [], []
            # sorted() is stable: equal timestamps keep input order.
            for index, sample in sorted(items, key=lambda item: item[1].timestamp):
                try:
                    done.append((index, self._score(sample, is_batch=True)))
                except OutOfOrderSample as exc:
                    failed.append({"index": index, "error": "out_of_order", "detail": str(exc)})
            return done, failed

        scored: dict[int, AnomalyResult] = {}
        for done, failed in self._pool.map(run_group, groups.values()):
            scored.update(done)
            errors.extend(failed)

        errors.sort(key=lambda e: e["index"])
        results = [scored[i] for i in sorted(scored)]
        log.info("batch_processed", items=len(raw_items), processed=len(results),
                 errors=len(errors), tourists=len(groups))
        return {"results": results, "errors": errors, "processed": len(results)}

    # -- reads --------------------------------------------------------------

    def get_history(self, tourist_id: str, limit: int | None = None) -> list[AnomalyResult]:
        """Retained verdicts for a tourist, most recent first."""
        return self._store.history(tourist_id, limit)

    def get_statistics(self) -> dict:
        """Model state plus monitoring totals.

        ``timestamp`` is the time of the last accepted sample or training run,
        so repeated reads with no writes in between are identical.
        """
        snapshot = self._stats.snapshot()
        result = self._training.statistics()
        updated_at = self._updated_at
        trained_at = self._training.model.trained_at
        if trained_at is not None and trained_at > updated_at:
            updated_at = trained_at
        result.update({
            "total_records_processed": snapshot["samples_processed"],
            "total_tourists_monitored": self._store.tourist_count(),
            "anomalies_detected": snapshot["anomalies_detected"],
            "anomalies_by_type": snapshot["anomalies_by_type"],
            "history_capacity": self._store.capacity,
            "timestamp": updated_at.isoformat(),
        })
        return result

    # -- archive and action dispatch -----------------------------------------

    async def publish(self, result: AnomalyResult) -> None:
        """Hand a verdict to the background consumer."""
        if self._queue is None:
            return
        record = VerdictRecord(
            server_timestamp_ms=int(time.time() * 1000),
            result=result,
            record_id=self._next_record_id,
        )
        self._next_record_id += 1
        try:
            await self._queue.put(record)
        except Exception:
            log.error("queue_put_failed", tourist=result.tourist_id[:8],
                      record_id=record.record_id, exc_info=True)
        self._stats.update_queue_depth(self._queue.qsize())

    async def run_verdict_consumer(self) -> None:
        """Archive verdicts and dispatch their actions. Runs as a background task."""
        if self._queue is None:
            return
        log.info("verdict_consumer_started")
        while True:
            record = await self._queue.get()
            self._stats.update_queue_depth(self._queue.qsize())
            if self._storage is not None:
                try:
                    await self._storage.store(record)
                except Exception:
                    log.error("storage_write_failed", record_id=record.record_id,
                              exc_info=True)
                    self._stats.record_storage_error()
            actions = record.result.actions_taken
            if actions and self._notifier is not None:
                try:
                    await self._notifier.dispatch(record)
                    self._stats.record_actions(len(actions))
                except Exception:
                    log.error("notifier_dispatch_failed", record_id=record.record_id,
                              exc_info=True)
                    self._stats.record_notifier_error()
