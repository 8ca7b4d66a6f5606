"""Fits the isolation forest and owns the live ModelState.

Readers grab ``service.model`` once per prediction and score against that
instance. ``train()`` builds a complete replacement off to the side and
swaps the reference under a lock, so a prediction never sees a half-built
model. Failure or cancellation leaves the previous model in place.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import joblib
import numpy as np
import structlog
from sklearn.ensemble import IsolationForest

from anomaly_service.core.errors import InsufficientData, InvalidSample, TrainingAborted
from anomaly_service.core.ml import FEATURES, ModelState, calibrate, fit_normalization
from anomaly_service.core.telemetry import parse_training_record

if TYPE_CHECKING:
    from anomaly_service.config import ModelConfig

log = structlog.get_logger()


class TrainingService:
    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        self._swap_lock = threading.Lock()
        self._train_lock = threading.Lock()
        self._model = ModelState(contamination=config.contamination)
        self._generation = 0
        self._last_train_failed = False
        self._last_error = ""

    @property
    def model(self) -> ModelState:
        return self._model

    def _check(self, cancel: threading.Event | None, stage: str) -> None:
        if cancel is not None and cancel.is_set():
            raise TrainingAborted(f"training cancelled during {stage}")

    def train(
        self,
        records: list[dict],
        contamination: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ModelState:
        """Fit a new model from historical records and make it live."""
        if contamination is None:
            contamination = self._config.contamination
        if not 0.0 < contamination < 0.5:
            raise ValueError(f"contamination must be in (0, 0.5), got {contamination}")

        with self._train_lock:
            try:
                model = self._fit(records, contamination, cancel)
            except (InsufficientData, TrainingAborted) as exc:
                self._last_train_failed = True
                self._last_error = str(exc)
                log.warning("model_training_failed", error=str(exc),
                            model_loaded=self._model.is_loaded)
                raise

            with self._swap_lock:
                self._model = model
                self._last_train_failed = False
                self._last_error = ""

        log.info("model_trained", version=model.version,
                 records=model.training_records, contamination=contamination)
        if self._config.path:
            self.save(self._config.path)
        return model

    def _fit(self, records, contamination: float, cancel) -> ModelState:
        rows = []
        skipped = 0
        for record in records or []:
            try:
                rows.append(parse_training_record(record))
            except InvalidSample:
                skipped += 1
        if skipped:
            log.info("training_records_skipped", count=skipped)

        minimum = self._config.min_training_records
        if len(rows) < minimum:
            raise InsufficientData(
                f"need at least {minimum} valid records to train, got {len(rows)}"
            )
        self._check(cancel, "validation")

        matrix = np.asarray(rows, dtype=float)
        means, stds = fit_normalization(matrix)
        normalized = (matrix - means) / stds
        self._check(cancel, "normalization")

        forest = IsolationForest(
            n_estimators=self._config.n_estimators,
            contamination=contamination,
            random_state=self._config.random_state,
        )
        forest.fit(normalized)
        self._check(cancel, "fit")

        raw = -forest.score_samples(normalized)
        threshold, scale = calibrate(raw, contamination)
        self._check(cancel, "calibration")

        self._generation += 1
        now = datetime.now(timezone.utc)
        return ModelState(
            is_loaded=True,
            contamination=contamination,
            version=f"iforest-v{self._generation}-{now:%Y%m%dT%H%M%SZ}",
            feature_means=tuple(float(v) for v in means),
            feature_stds=tuple(float(v) for v in stds),
            forest=forest,
            threshold=threshold,
            scale=scale,
            trained_at=now,
            training_records=len(rows),
        )

    def save(self, path: str | Path) -> None:
        """Persist the live model with joblib."""
        model = self._model
        if not model.is_loaded:
            return
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(model, path)
        log.info("model_saved", path=str(path), version=model.version)

    def load(self, path: str | Path) -> bool:
        """Load a previously saved model. Returns False when none is usable."""
        path = Path(path)
        if not path.exists():
            return False
        try:
            model = joblib.load(path)
        except Exception:
            log.error("model_load_failed", path=str(path), exc_info=True)
            self._last_train_failed = True
            self._last_error = f"could not load model from {path}"
            return False
        if not isinstance(model, ModelState) or not model.is_loaded:
            log.warning("model_load_ignored", path=str(path))
            return False
        with self._swap_lock:
            self._model = model
        log.info("model_loaded", path=str(path), version=model.version)
        return True

    def statistics(self) -> dict:
        model = self._model
        return {
            "model_loaded": model.is_loaded,
            "model_version": model.version,
            "contamination": model.contamination,
            "trained_at": model.trained_at.isoformat() if model.trained_at else None,
            "training_records": model.training_records,
            "features": list(FEATURES),
            "feature_normalization": model.normalization,
            "last_train_failed": self._last_train_failed,
        }

    def health(self) -> dict:
        model = self._model
        degraded = not model.is_loaded or self._last_train_failed
        result = {
            "status": "degraded" if degraded else "healthy",
            "model_loaded": model.is_loaded,
            "version": model.version,
        }
        if self._last_error:
            result["last_error"] = self._last_error
        return result
