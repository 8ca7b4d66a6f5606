"""Per-tourist rolling state.

Each tourist gets an independent cell guarded by its own lock, so updates
for one tourist never wait on another. The registry lock is only held
while looking up or creating a cell.
"""

from __future__ import annotations

import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterator

import structlog

from anomaly_service.core.errors import OutOfOrderSample
from anomaly_service.core.models import HistoryEntry, TouristState

if TYPE_CHECKING:
    from anomaly_service.core.models import AnomalyResult, TelemetrySample

log = structlog.get_logger()


@dataclass
class _Cell:
    lock: threading.RLock = field(default_factory=threading.RLock)
    state: TouristState | None = None


class TouristStateStore:
    """Sharded mutex map of TouristState, keyed by tourist id."""

    def __init__(self, capacity: int = 200, moving_speed_kmh: float = 1.0) -> None:
        if capacity < 1:
            raise ValueError("history capacity must be at least 1")
        self._capacity = capacity
        self._moving_speed = moving_speed_kmh
        self._registry_lock = threading.Lock()
        self._cells: dict[str, _Cell] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def _cell(self, tourist_id: str) -> _Cell:
        with self._registry_lock:
            cell = self._cells.get(tourist_id)
            if cell is None:
                cell = _Cell()
                self._cells[tourist_id] = cell
            return cell

    def get(self, tourist_id: str) -> TouristState | None:
        with self._registry_lock:
            cell = self._cells.get(tourist_id)
        if cell is None:
            return None
        with cell.lock:
            return cell.state

    @contextmanager
    def locked(self, tourist_id: str) -> Iterator[TouristState | None]:
        """Hold the tourist's lock for a full read-score-append cycle.

        Yields the current state (None for an unseen tourist). Calls to
        apply_and_append for the same tourist inside the block re-enter the
        same lock.
        """
        cell = self._cell(tourist_id)
        with cell.lock:
            yield cell.state

    def apply_and_append(
        self,
        tourist_id: str,
        sample: TelemetrySample,
        result: AnomalyResult,
    ) -> TouristState:
        """Fold an accepted sample and its verdict into the tourist's state.

        Raises OutOfOrderSample, without mutating anything, when the sample
        is older than the last accepted one. Equal timestamps are accepted.
        """
        cell = self._cell(tourist_id)
        with cell.lock:
            state = cell.state
            if state is not None and state.last_sample is not None:
                last_ts = state.last_sample.timestamp
                if sample.timestamp < last_ts:
                    raise OutOfOrderSample(tourist_id, sample.timestamp, last_ts)

            if state is None:
                state = TouristState(
                    tourist_id=tourist_id,
                    history=deque(maxlen=self._capacity),
                    first_seen=sample.timestamp,
                )
                cell.state = state
                log.debug("tourist_state_created", tourist=tourist_id[:8])

            state.history.append(HistoryEntry(sample=sample, result=result))
            state.last_sample = sample

            if not sample.speed_unknown and sample.speed > self._moving_speed:
                state.last_movement = sample.timestamp

            if result.is_anomaly:
                state.consecutive_anomaly_streak += 1
            else:
                state.consecutive_anomaly_streak = 0

            if not sample.speed_unknown:
                state.baseline["speed"].add(sample.speed)
            state.baseline["deviation_m"].add(sample.deviation_m)
            state.baseline["accelerometer_magnitude"].add(sample.accelerometer_magnitude)
            return state

    def history(self, tourist_id: str, limit: int | None = None) -> list[AnomalyResult]:
        """Retained results, most recent first."""
        with self._registry_lock:
            cell = self._cells.get(tourist_id)
        if cell is None:
            return []
        with cell.lock:
            if cell.state is None:
                return []
            results = [entry.result for entry in reversed(cell.state.history)]
        if limit is not None:
            results = results[:limit]
        return results

    def tourist_count(self) -> int:
        """Number of tourists with at least one accepted sample."""
        with self._registry_lock:
            cells = list(self._cells.values())
        return sum(1 for cell in cells if cell.state is not None)
