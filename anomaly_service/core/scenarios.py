"""Synthetic telemetry sequences for the dashboard's demo buttons.

Each scenario is a short trail for a fresh demo tourist: a few ordinary
samples followed by the one that should trip the named rule. The trail is
scored through the real detector, so the demo shows live behaviour.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

# Jaipur, where the dashboard's mock telemetry is centered.
_BASE_LAT = 26.9124
_BASE_LNG = 75.7873


def _sample(tourist_id: str, ts: datetime, step: int, **overrides) -> dict:
    sample = {
        "touristId": tourist_id,
        "ts": ts.isoformat(),
        "lat": _BASE_LAT + step * 0.0003,
        "lng": _BASE_LNG + step * 0.0003,
        "speed": 4.5,
        "deviationMeters": 12.0,
        "in_alert_zone": 0,
        "location_risk_score": 1.5,
        "accelerometer_magnitude": 1.0,
        "battery_level": 80.0,
        "panic_button_pressed": False,
    }
    sample.update(overrides)
    return sample


def _walk(tourist_id: str, start: datetime, count: int, interval_s: int = 30) -> list[dict]:
    return [
        _sample(tourist_id, start + timedelta(seconds=i * interval_s), i)
        for i in range(count)
    ]


def _route_deviation(tid: str, now: datetime) -> list[dict]:
    trail = _walk(tid, now - timedelta(minutes=3), 4)
    trail.append(_sample(tid, now, 5, deviationMeters=1800.0))
    return trail


def _inactivity(tid: str, now: datetime) -> list[dict]:
    start = now - timedelta(minutes=70)
    trail = _walk(tid, start, 3)
    trail.append(_sample(tid, now, 3, speed=0.0, points_last_5m=1))
    return trail


def _fall_detection(tid: str, now: datetime) -> list[dict]:
    trail = _walk(tid, now - timedelta(minutes=3), 4)
    trail.append(_sample(tid, now, 4, speed=0.2, accelerometer_magnitude=4.2))
    return trail


def _speed_anomaly(tid: str, now: datetime) -> list[dict]:
    # Short trail: the jump must read as speed, not as erratic movement.
    trail = _walk(tid, now - timedelta(minutes=3), 3)
    trail.append(_sample(tid, now, 40, speed=230.0))
    return trail


def _geofence_violation(tid: str, now: datetime) -> list[dict]:
    trail = _walk(tid, now - timedelta(minutes=3), 4)
    trail.append(_sample(tid, now, 5, in_alert_zone=1, location_risk_score=9.5))
    return trail


def _panic(tid: str, now: datetime) -> list[dict]:
    trail = _walk(tid, now - timedelta(minutes=3), 4)
    trail.append(_sample(tid, now, 5, panic_button_pressed=True))
    return trail


SCENARIOS = {
    "route_deviation": _route_deviation,
    "inactivity": _inactivity,
    "fall_detection": _fall_detection,
    "speed_anomaly": _speed_anomaly,
    "geofence_violation": _geofence_violation,
    "panic": _panic,
}


def build_scenario(name: str, now: datetime | None = None) -> list[dict]:
    """Return the raw telemetry trail for a scenario, oldest first.

    Raises KeyError for an unknown scenario name.
    """
    builder = SCENARIOS[name]
    tourist_id = f"demo-{name}-{uuid.uuid4().hex[:8]}"
    return builder(tourist_id, now or datetime.now(timezone.utc))
