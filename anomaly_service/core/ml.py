"""Isolation-forest scorer over normalized telemetry features.

The forest yields a raw isolation score per sample (higher = easier to
isolate = more anomalous). At train time the raw score at the
``1 - contamination`` quantile becomes the decision threshold, and a
logistic curve centered on it maps raw scores onto [0, 1]:

    ml_score = 1 / (1 + exp(-(raw - threshold) / scale))

so every sample at or beyond the threshold scores >= 0.5.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import numpy as np
from sklearn.ensemble import IsolationForest

if TYPE_CHECKING:
    from anomaly_service.core.models import TelemetrySample, TouristState

FEATURES = (
    "speed",
    "deviation_m",
    "accelerometer_magnitude",
    "location_risk_score",
    "points_last_5m",
)

# Features whose mean may be replaced by the tourist's own baseline mean.
_PERSONAL_FEATURES = {"speed", "deviation_m", "accelerometer_magnitude"}

_MIN_STD = 1e-6


@dataclass(frozen=True)
class ModelState:
    """A fitted model and everything needed to score with it.

    Never mutated after construction; retraining builds a new instance and
    swaps the reference.
    """
    is_loaded: bool = False
    contamination: float = 0.05
    version: str = "none"
    feature_means: tuple[float, ...] = ()
    feature_stds: tuple[float, ...] = ()
    forest: IsolationForest | None = None
    threshold: float = 0.0
    scale: float = 1.0
    trained_at: datetime | None = None
    training_records: int = 0

    @property
    def normalization(self) -> dict:
        return {
            name: {"mean": round(mean, 4), "std": round(std, 4)}
            for name, mean, std in zip(FEATURES, self.feature_means, self.feature_stds)
        }


def feature_vector(sample: TelemetrySample) -> list[float]:
    return [
        sample.speed,
        sample.deviation_m,
        sample.accelerometer_magnitude,
        sample.location_risk_score,
        float(sample.points_last_5m or 0),
    ]


def fit_normalization(matrix: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Per-feature mean and std; zero-variance features get a unit std."""
    means = matrix.mean(axis=0)
    stds = matrix.std(axis=0)
    stds = np.where(stds < _MIN_STD, 1.0, stds)
    return means, stds


def calibrate(raw_scores: np.ndarray, contamination: float) -> tuple[float, float]:
    """Return (threshold, scale) for the logistic mapping."""
    threshold = float(np.quantile(raw_scores, 1.0 - contamination))
    scale = float(raw_scores.std())
    if scale < _MIN_STD:
        scale = 1.0
    return threshold, scale


def logistic(raw: float, threshold: float, scale: float) -> float:
    z = (raw - threshold) / scale
    # Guard exp overflow for extreme outliers.
    if z < -60:
        return 0.0
    if z > 60:
        return 1.0
    return 1.0 / (1.0 + math.exp(-z))


class MLScorer:
    """Scores one sample against the current ModelState. Never raises."""

    def __init__(self, baseline_min_samples: int = 10) -> None:
        self._min_baseline = baseline_min_samples

    def score(
        self,
        sample: TelemetrySample,
        state: TouristState | None,
        model: ModelState,
    ) -> tuple[float, dict]:
        """Return (ml_score, details)."""
        if not model.is_loaded or model.forest is None:
            return 0.0, {"model_not_loaded": True}

        means = list(model.feature_means)
        personalized = []
        if state is not None:
            for i, name in enumerate(FEATURES):
                if name not in _PERSONAL_FEATURES:
                    continue
                personal = state.baseline_mean(name, self._min_baseline)
                if personal is not None:
                    means[i] = personal
                    personalized.append(name)

        x = (np.asarray(feature_vector(sample)) - np.asarray(means)) / np.asarray(model.feature_stds)
        raw = float(-model.forest.score_samples(x.reshape(1, -1))[0])
        score = logistic(raw, model.threshold, model.scale)

        details = {
            "ml_raw_score": round(raw, 4),
            "ml_threshold": round(model.threshold, 4),
            "model_version": model.version,
        }
        if personalized:
            details["ml_personal_baseline"] = personalized
        return score, details
