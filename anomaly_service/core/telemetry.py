"""Telemetry parsing and validation.

Turns a raw JSON object from the clients into a TelemetrySample, or raises
InvalidSample. Pure: no state is read or written here.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

from anomaly_service.core.errors import InvalidSample
from anomaly_service.core.models import TelemetrySample


def _pick(data: dict, *keys: str):
    """Return the first present key's value (clients send both spellings)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _number(data: dict, *keys: str, default: float | None = None,
            low: float | None = None, high: float | None = None) -> float | None:
    value = _pick(data, *keys)
    if value is None:
        return default
    # bool is an int subclass; a flag is never a measurement.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidSample(f"{keys[0]} must be a number, got {value!r}")
    try:
        value = float(value)
    except OverflowError:
        raise InvalidSample(f"{keys[0]} is out of range") from None
    if not math.isfinite(value):
        raise InvalidSample(f"{keys[0]} must be finite")
    if low is not None and value < low:
        raise InvalidSample(f"{keys[0]}={value} is below {low}")
    if high is not None and value > high:
        raise InvalidSample(f"{keys[0]}={value} is above {high}")
    return value


def _flag(data: dict, *keys: str) -> bool:
    value = _pick(data, *keys)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    raise InvalidSample(f"{keys[0]} must be a boolean or 0/1, got {value!r}")


def parse_timestamp(value) -> datetime:
    """Parse an ISO-8601 instant. Naive values are taken as UTC."""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str) and value:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            ts = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidSample(f"unparsable timestamp {value!r}") from None
    else:
        raise InvalidSample(f"timestamp is required, got {value!r}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def parse_sample(data: dict) -> TelemetrySample:
    """Validate and normalize one raw telemetry object."""
    if not isinstance(data, dict):
        raise InvalidSample("telemetry sample must be a JSON object")

    tourist_id = _pick(data, "touristId", "tourist_id")
    if not isinstance(tourist_id, str) or not tourist_id.strip():
        raise InvalidSample("touristId is required")

    lat = _number(data, "lat", "latitude", low=-90.0, high=90.0)
    lng = _number(data, "lng", "lon", "longitude", low=-180.0, high=180.0)
    if lat is None or lng is None:
        raise InvalidSample("lat and lng are required")

    speed = _number(data, "speed", low=0.0)
    points = _number(data, "points_last_5m", "pointsLastFiveMinutes", low=0.0)
    if points is not None and not points.is_integer():
        raise InvalidSample(f"points_last_5m must be a whole count, got {points}")

    return TelemetrySample(
        tourist_id=tourist_id,
        timestamp=parse_timestamp(_pick(data, "ts", "timestamp")),
        lat=lat,
        lng=lng,
        speed=speed if speed is not None else 0.0,
        speed_unknown=speed is None,
        deviation_m=_number(data, "deviationMeters", "deviation_meters", default=0.0, low=0.0),
        in_alert_zone=_flag(data, "in_alert_zone", "inAlertZone"),
        dt_s=_number(data, "dt_s", "elapsedSeconds", low=0.0),
        points_last_5m=int(points) if points is not None else None,
        location_risk_score=_number(data, "location_risk_score", "locationRiskScore",
                                    default=0.0, low=0.0, high=10.0),
        accelerometer_magnitude=_number(data, "accelerometer_magnitude", "accelerometerMagnitude",
                                        default=1.0, low=0.0),
        battery_level=_number(data, "battery_level", "batteryLevel", low=0.0, high=100.0),
        panic_button_pressed=_flag(data, "panic_button_pressed", "panicButtonPressed"),
    )


def parse_training_record(data: dict) -> list[float]:
    """Extract the model feature vector from a historical record.

    Records use the telemetry keys; identity and position are not needed.
    Missing features take the telemetry defaults.
    """
    if not isinstance(data, dict):
        raise InvalidSample("training record must be a JSON object")
    return [
        _number(data, "speed", default=0.0, low=0.0),
        _number(data, "deviationMeters", "deviation_meters", default=0.0, low=0.0),
        _number(data, "accelerometer_magnitude", "accelerometerMagnitude", default=1.0, low=0.0),
        _number(data, "location_risk_score", "locationRiskScore", default=0.0, low=0.0, high=10.0),
        _number(data, "points_last_5m", "pointsLastFiveMinutes", default=0.0, low=0.0),
    ]
