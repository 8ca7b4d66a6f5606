"""Anomaly service — core internal data models.

These are plain dataclasses with no framework dependencies.
JSON payloads are converted to/from these at the boundary.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

# Anomaly types, in rule priority order (ties go to the earlier entry).
NONE = "none"
DISTRESS_PATTERN = "distress_pattern"
FALL_DETECTED = "fall_detected"
GEOFENCE_VIOLATION = "geofence_violation"
ROUTE_DEVIATION = "route_deviation"
SPEED_ANOMALY = "speed_anomaly"
INACTIVITY = "inactivity"
STOPPED = "stopped"
ERRATIC_MOVEMENT = "erratic_movement"

ANOMALY_TYPES = (
    NONE,
    ROUTE_DEVIATION,
    INACTIVITY,
    STOPPED,
    ERRATIC_MOVEMENT,
    GEOFENCE_VIOLATION,
    SPEED_ANOMALY,
    FALL_DETECTED,
    DISTRESS_PATTERN,
)

SEVERITY_LOW = 1
SEVERITY_MEDIUM = 2
SEVERITY_HIGH = 3
SEVERITY_CRITICAL = 4

SEVERITY_LABELS = {
    SEVERITY_LOW: "Low",
    SEVERITY_MEDIUM: "Medium",
    SEVERITY_HIGH: "High",
    SEVERITY_CRITICAL: "Critical",
}

# Features tracked per tourist with Welford running statistics.
BASELINE_FEATURES = ("speed", "deviation_m", "accelerometer_magnitude")


@dataclass(frozen=True)
class TelemetrySample:
    tourist_id: str
    timestamp: datetime
    lat: float
    lng: float
    speed: float = 0.0  # km/h
    speed_unknown: bool = False
    deviation_m: float = 0.0
    in_alert_zone: bool = False
    dt_s: float | None = None
    points_last_5m: int | None = None
    location_risk_score: float = 0.0
    accelerometer_magnitude: float = 1.0  # g
    battery_level: float | None = None
    panic_button_pressed: bool = False

    def to_dict(self) -> dict:
        return {
            "touristId": self.tourist_id,
            "ts": self.timestamp.isoformat(),
            "lat": self.lat,
            "lng": self.lng,
            "speed": None if self.speed_unknown else self.speed,
            "deviationMeters": self.deviation_m,
            "in_alert_zone": self.in_alert_zone,
            "dt_s": self.dt_s,
            "points_last_5m": self.points_last_5m,
            "location_risk_score": self.location_risk_score,
            "accelerometer_magnitude": self.accelerometer_magnitude,
            "battery_level": self.battery_level,
            "panic_button_pressed": self.panic_button_pressed,
        }


@dataclass
class RunningStats:
    """Welford's online mean/variance."""
    count: int = 0
    mean: float = 0.0
    _m2: float = 0.0

    def add(self, value: float) -> None:
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self._m2 += delta * (value - self.mean)

    @property
    def variance(self) -> float:
        return self._m2 / (self.count - 1) if self.count > 1 else 0.0

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)


@dataclass(frozen=True)
class AnomalyResult:
    tourist_id: str
    timestamp: datetime
    is_anomaly: bool
    anomaly_type: str
    severity: int | None
    confidence: float
    anomaly_score: float
    rule_based_score: float
    ml_based_score: float
    details: dict = field(default_factory=dict)
    recommendations: tuple[str, ...] = ()
    actions_taken: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        """Wire form expected by the dashboard and mobile clients."""
        data = {
            "touristId": self.tourist_id,
            "timestamp": self.timestamp.isoformat(),
            "is_anomaly": self.is_anomaly,
            "anomaly_type": self.anomaly_type,
            "confidence": round(self.confidence, 4),
            "anomaly_score": round(self.anomaly_score, 4),
            "rule_based_score": round(self.rule_based_score, 4),
            "ml_based_score": round(self.ml_based_score, 4),
            "details": dict(self.details),
            "recommendations": list(self.recommendations),
            "actions_taken": list(self.actions_taken),
        }
        # Severity is only meaningful for anomalies.
        if self.is_anomaly and self.severity is not None:
            data["severity"] = self.severity
        return data


@dataclass(frozen=True)
class HistoryEntry:
    sample: TelemetrySample
    result: AnomalyResult


@dataclass
class TouristState:
    """Rolling per-tourist memory. Owned and mutated by TouristStateStore only."""
    tourist_id: str
    history: deque[HistoryEntry]
    first_seen: datetime
    last_sample: TelemetrySample | None = None
    last_movement: datetime | None = None
    consecutive_anomaly_streak: int = 0
    baseline: dict[str, RunningStats] = field(
        default_factory=lambda: {name: RunningStats() for name in BASELINE_FEATURES}
    )

    def baseline_mean(self, feature: str, min_samples: int) -> float | None:
        """Tourist mean for a feature, or None until the baseline is warm."""
        stats = self.baseline[feature]
        if stats.count < min_samples:
            return None
        return stats.mean


@dataclass
class VerdictRecord:
    """A verdict handed to the background consumer for archive and dispatch."""
    server_timestamp_ms: int
    result: AnomalyResult
    record_id: int = 0
