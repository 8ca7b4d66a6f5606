"""Rule-based scorer: deterministic heuristics over a sample and its history.

Each rule yields a sub-score in [0, 1] when it fires. The overall rule score
is the maximum sub-score; the anomaly type is the rule holding that maximum,
with ties going to the rule evaluated first:

    panic > fall > geofence > route deviation > speed > inactivity/stopped > erratic
"""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from anomaly_service.core.models import (
    DISTRESS_PATTERN,
    ERRATIC_MOVEMENT,
    FALL_DETECTED,
    GEOFENCE_VIOLATION,
    INACTIVITY,
    NONE,
    ROUTE_DEVIATION,
    SPEED_ANOMALY,
    STOPPED,
)

if TYPE_CHECKING:
    from anomaly_service.config import DetectionConfig
    from anomaly_service.core.models import TelemetrySample, TouristState

# Earth radius in meters (for Haversine).
_EARTH_R = 6_371_000.0

# Gravity at rest, used as the fall baseline until the tourist's own is warm.
_DEFAULT_ACCEL_G = 1.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points."""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    return 2 * _EARTH_R * math.asin(math.sqrt(a))


def bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial bearing in degrees [0, 360) from point 1 to point 2."""
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dl = math.radians(lon2 - lon1)
    x = math.sin(dl) * math.cos(p2)
    y = math.cos(p1) * math.sin(p2) - math.sin(p1) * math.cos(p2) * math.cos(dl)
    return (math.degrees(math.atan2(x, y)) + 360) % 360


def ramp(value: float, start: float, end: float, floor: float, ceiling: float = 1.0) -> float:
    """Linear score: ``floor`` at ``start`` rising to ``ceiling`` at ``end``."""
    if end <= start:
        return ceiling
    frac = (value - start) / (end - start)
    return max(floor, min(ceiling, floor + (ceiling - floor) * frac))


@dataclass
class RuleOutcome:
    score: float = 0.0
    anomaly_type: str = NONE
    fired: dict[str, float] = field(default_factory=dict)
    details: dict = field(default_factory=dict)


class RuleScorer:
    """Evaluates the fixed rule set. Holds configuration only, no state."""

    def __init__(self, config: DetectionConfig, baseline_min_samples: int = 10,
                 moving_speed_kmh: float = 1.0) -> None:
        self._cfg = config
        self._min_baseline = baseline_min_samples
        self._moving_speed = moving_speed_kmh

    def score(self, sample: TelemetrySample, state: TouristState | None) -> RuleOutcome:
        outcome = RuleOutcome()
        checks = (
            (DISTRESS_PATTERN, self._panic),
            (FALL_DETECTED, self._fall),
            (GEOFENCE_VIOLATION, self._geofence),
            (ROUTE_DEVIATION, self._route_deviation),
            (SPEED_ANOMALY, self._speed),
            (INACTIVITY, self._inactivity),
            (ERRATIC_MOVEMENT, self._erratic),
        )
        for default_type, check in checks:
            hit = check(sample, state, outcome.details)
            if hit is None:
                continue
            sub_score, anomaly_type = hit
            anomaly_type = anomaly_type or default_type
            outcome.fired[anomaly_type] = round(sub_score, 4)
            # Strictly greater: earlier rules win ties.
            if sub_score > outcome.score:
                outcome.score = sub_score
                outcome.anomaly_type = anomaly_type

        outcome.details["rules_fired"] = list(outcome.fired)
        return outcome

    # -- individual rules -------------------------------------------------
    # Each returns None when the rule does not fire, else (sub_score, type),
    # where type None means the rule's default type.

    def _panic(self, sample, state, details):
        if not sample.panic_button_pressed:
            return None
        details["panic_button_pressed"] = True
        return 1.0, None

    def _fall(self, sample, state, details):
        baseline = None
        if state is not None:
            baseline = state.baseline_mean("accelerometer_magnitude", self._min_baseline)
        if not baseline or baseline <= 0:
            baseline = _DEFAULT_ACCEL_G
        threshold = self._cfg.fall_multiplier * baseline
        if sample.accelerometer_magnitude <= threshold:
            return None
        details["fall"] = {
            "accelerometer_magnitude": sample.accelerometer_magnitude,
            "baseline_g": round(baseline, 3),
            "threshold_g": round(threshold, 3),
        }
        return ramp(sample.accelerometer_magnitude, threshold,
                    self._cfg.fall_saturation * baseline, self._cfg.fall_floor), None

    def _geofence(self, sample, state, details):
        if not sample.in_alert_zone:
            return None
        details["geofence"] = {"location_risk_score": sample.location_risk_score}
        return max(0.0, min(1.0, sample.location_risk_score / 10.0)), None

    def _route_deviation(self, sample, state, details):
        if sample.deviation_m <= self._cfg.deviation_threshold_m:
            return None
        details["route_deviation"] = {
            "deviation_m": sample.deviation_m,
            "threshold_m": self._cfg.deviation_threshold_m,
        }
        return ramp(sample.deviation_m, self._cfg.deviation_threshold_m,
                    self._cfg.deviation_cap_m, self._cfg.ramp_floor), None

    def _speed(self, sample, state, details):
        if sample.speed_unknown:
            details["speed_unknown"] = True
            return None
        cfg = self._cfg
        scores = []
        if sample.speed > cfg.speed_cap_kmh:
            scores.append(ramp(sample.speed, cfg.speed_cap_kmh, 2 * cfg.speed_cap_kmh, cfg.ramp_floor))

        baseline = None
        if state is not None:
            baseline = state.baseline_mean("speed", self._min_baseline)
        if baseline:
            limit = max(cfg.speed_baseline_multiplier * baseline, cfg.speed_baseline_floor_kmh)
            if sample.speed > limit:
                scores.append(ramp(sample.speed, limit, 2 * limit, cfg.ramp_floor))

        if not scores:
            return None
        details["speed"] = {
            "speed_kmh": sample.speed,
            "cap_kmh": cfg.speed_cap_kmh,
            "baseline_kmh": round(baseline, 2) if baseline else None,
        }
        return max(scores), None

    def _inactivity(self, sample, state, details):
        if state is None or state.last_sample is None:
            return None
        cfg = self._cfg
        # Same threshold the store uses to refresh last_movement.
        if not sample.speed_unknown and sample.speed > self._moving_speed:
            return None

        since = state.last_movement or state.first_seen
        elapsed = (sample.timestamp - since).total_seconds()
        points = sample.points_last_5m or 0

        if elapsed >= cfg.inactivity_threshold_s and points <= cfg.low_activity_points:
            details["inactivity"] = {"inactive_s": round(elapsed, 1), "points_last_5m": points}
            return ramp(elapsed, cfg.inactivity_threshold_s,
                        2 * cfg.inactivity_threshold_s, cfg.ramp_floor), INACTIVITY
        near_zero = sample.speed_unknown or sample.speed <= cfg.stopped_speed_kmh
        if near_zero and elapsed >= cfg.stopped_threshold_s:
            details["stopped"] = {"stopped_s": round(elapsed, 1), "speed_kmh": sample.speed}
            return ramp(elapsed, cfg.stopped_threshold_s, cfg.inactivity_threshold_s,
                        cfg.ramp_floor, ceiling=0.6), STOPPED
        return None

    def _erratic(self, sample, state, details):
        cfg = self._cfg
        if state is None or cfg.erratic_window < 3:
            return None
        recent = [entry.sample for entry in list(state.history)[-(cfg.erratic_window - 1):]]
        window = recent + [sample]
        if len(window) < cfg.erratic_window:
            return None

        speeds = [s.speed for s in window if not s.speed_unknown]
        speed_changes = [b - a for a, b in zip(speeds, speeds[1:])]
        speed_std = statistics.pstdev(speed_changes) if len(speed_changes) >= 2 else 0.0

        headings = []
        for a, b in zip(window, window[1:]):
            if haversine_m(a.lat, a.lng, b.lat, b.lng) >= cfg.erratic_min_displacement_m:
                headings.append(bearing_deg(a.lat, a.lng, b.lat, b.lng))
        turns = [abs((h2 - h1 + 180) % 360 - 180) for h1, h2 in zip(headings, headings[1:])]
        mean_turn = statistics.fmean(turns) if turns else 0.0

        ratio = max(speed_std / cfg.erratic_speed_std_kmh, mean_turn / cfg.erratic_heading_deg)
        if ratio < 1.0:
            return None
        details["erratic"] = {
            "speed_change_std_kmh": round(speed_std, 2),
            "mean_heading_change_deg": round(mean_turn, 1),
            "window": len(window),
        }
        return ramp(ratio, 1.0, 2.0, cfg.ramp_floor), None
