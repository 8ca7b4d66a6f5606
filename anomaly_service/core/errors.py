"""Domain errors raised by the detection core.

A missing model is not an error: scoring degrades to rules only and the
result carries ``model_not_loaded`` in its details.
"""

from __future__ import annotations


class DetectionError(Exception):
    """Base class for detection core errors."""


class InvalidSample(DetectionError):
    """Malformed telemetry, rejected before any state is touched."""


class OutOfOrderSample(DetectionError):
    """Sample older than the last accepted sample for the same tourist."""

    def __init__(self, tourist_id: str, timestamp, last_timestamp) -> None:
        super().__init__(
            f"sample at {timestamp.isoformat()} is older than last accepted "
            f"sample at {last_timestamp.isoformat()} for tourist {tourist_id}"
        )
        self.tourist_id = tourist_id
        self.timestamp = timestamp
        self.last_timestamp = last_timestamp


class InsufficientData(DetectionError):
    """Training called with fewer records than the configured minimum."""


class TrainingAborted(DetectionError):
    """Training was cancelled before the new model was swapped in."""
