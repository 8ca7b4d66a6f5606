"""Combine rule and ML scores into the final verdict."""

from __future__ import annotations

from typing import TYPE_CHECKING

from anomaly_service.core.models import (
    DISTRESS_PATTERN,
    ERRATIC_MOVEMENT,
    FALL_DETECTED,
    GEOFENCE_VIOLATION,
    INACTIVITY,
    NONE,
    ROUTE_DEVIATION,
    SEVERITY_CRITICAL,
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    SPEED_ANOMALY,
    STOPPED,
    AnomalyResult,
)

if TYPE_CHECKING:
    from anomaly_service.config import FusionConfig
    from anomaly_service.core.models import TelemetrySample
    from anomaly_service.core.rules import RuleOutcome

AUTO_ESCALATE = "auto_escalate"
NOTIFY_AUTHORITY = "notify_authority"

_ACTIONS = {
    SEVERITY_CRITICAL: (AUTO_ESCALATE, NOTIFY_AUTHORITY),
    SEVERITY_HIGH: (NOTIFY_AUTHORITY,),
}

# (anomaly_type, severity) -> guidance. Missing severities fall back to the
# closest lower entry for the type, then to _GENERIC.
_RECOMMENDATIONS: dict[str, dict[int, tuple[str, ...]]] = {
    DISTRESS_PATTERN: {
        SEVERITY_CRITICAL: (
            "Dispatch nearest response unit to last known location",
            "Attempt immediate voice contact with tourist",
            "Alert emergency contacts",
        ),
    },
    FALL_DETECTED: {
        SEVERITY_LOW: ("Request a wellness check-in from tourist",),
        SEVERITY_MEDIUM: ("Call tourist to confirm wellbeing",),
        SEVERITY_HIGH: ("Call tourist immediately; prepare medical response if unreachable",),
        SEVERITY_CRITICAL: ("Dispatch immediate medical response", "Alert emergency contacts"),
    },
    GEOFENCE_VIOLATION: {
        SEVERITY_LOW: ("Send in-app advisory about the restricted zone",),
        SEVERITY_MEDIUM: ("Advise tourist to leave the alert zone",),
        SEVERITY_HIGH: ("Contact tourist and guide them out of the alert zone",),
        SEVERITY_CRITICAL: ("Dispatch patrol to the alert zone", "Contact tourist immediately"),
    },
    ROUTE_DEVIATION: {
        SEVERITY_LOW: ("Monitor; no action required",),
        SEVERITY_MEDIUM: ("Send route check-in notification to tourist",),
        SEVERITY_HIGH: ("Contact tourist to confirm intended route",),
        SEVERITY_CRITICAL: ("Contact tourist and share location with local authority",),
    },
    SPEED_ANOMALY: {
        SEVERITY_LOW: ("Monitor; no action required",),
        SEVERITY_MEDIUM: ("Verify tourist's mode of transport",),
        SEVERITY_HIGH: ("Contact tourist to confirm they are safe",),
        SEVERITY_CRITICAL: ("Possible abduction or accident; alert local authority",),
    },
    INACTIVITY: {
        SEVERITY_LOW: ("Monitor; no action required",),
        SEVERITY_MEDIUM: ("Send check-in request to tourist",),
        SEVERITY_HIGH: ("Call tourist; contact emergency contacts if unreachable",),
        SEVERITY_CRITICAL: ("Dispatch welfare check to last known location",),
    },
    STOPPED: {
        SEVERITY_LOW: ("Monitor; no action required",),
        SEVERITY_MEDIUM: ("Send check-in request to tourist",),
        SEVERITY_HIGH: ("Call tourist to confirm wellbeing",),
    },
    ERRATIC_MOVEMENT: {
        SEVERITY_LOW: ("Monitor; no action required",),
        SEVERITY_MEDIUM: ("Review recent movement trail",),
        SEVERITY_HIGH: ("Contact tourist to confirm they are safe",),
        SEVERITY_CRITICAL: ("Alert local authority with movement trail",),
    },
}

_GENERIC = {
    SEVERITY_LOW: ("Monitor; no action required",),
    SEVERITY_MEDIUM: ("Send check-in request to tourist",),
    SEVERITY_HIGH: ("Contact tourist to confirm they are safe",),
    SEVERITY_CRITICAL: ("Alert local authority",),
}


def recommendations_for(anomaly_type: str, severity: int) -> tuple[str, ...]:
    table = _RECOMMENDATIONS.get(anomaly_type, {})
    for level in range(severity, SEVERITY_LOW - 1, -1):
        if level in table:
            return table[level]
    return _GENERIC.get(severity, ())


class FusionEngine:
    def __init__(self, config: FusionConfig) -> None:
        self._cfg = config

    def _severity(self, score: float) -> int:
        cfg = self._cfg
        if score >= cfg.critical_cutoff:
            return SEVERITY_CRITICAL
        if score >= cfg.high_cutoff:
            return SEVERITY_HIGH
        if score >= cfg.anomaly_cutoff:
            return SEVERITY_MEDIUM
        return SEVERITY_LOW

    def _confidence(self, rule_score: float, ml_score: float) -> float:
        confidence = 1.0 - abs(rule_score - ml_score)
        meaningful = self._cfg.meaningful_score
        # Exactly one scorer fired: agreement is not evidence.
        if (rule_score > meaningful) != (ml_score > meaningful):
            confidence = max(confidence, self._cfg.confidence_floor)
        return max(0.0, min(1.0, confidence))

    def fuse(
        self,
        sample: TelemetrySample,
        rules: RuleOutcome,
        ml_score: float,
        ml_details: dict,
        streak: int,
    ) -> AnomalyResult:
        cfg = self._cfg
        rule_score = rules.score
        panic = sample.panic_button_pressed

        if rules.anomaly_type == DISTRESS_PATTERN:
            anomaly_score = max(rule_score, ml_score)
        else:
            anomaly_score = cfg.rule_weight * rule_score + cfg.ml_weight * ml_score

        is_anomaly = anomaly_score >= cfg.anomaly_cutoff or panic

        # Below the cutoff the verdict is "none"; sub-threshold rules stay
        # visible in details["rules_fired"].
        if not is_anomaly:
            anomaly_type = NONE
        elif rule_score > 0:
            anomaly_type = rules.anomaly_type
        else:
            anomaly_type = ERRATIC_MOVEMENT

        details = dict(rules.details)
        details.update(ml_details)

        severity = None
        recommendations: tuple[str, ...] = ()
        actions: tuple[str, ...] = ()
        if is_anomaly:
            if panic:
                anomaly_type = DISTRESS_PATTERN
                severity = SEVERITY_CRITICAL
            else:
                severity = self._severity(anomaly_score)
                if streak >= cfg.streak_escalation and severity < SEVERITY_CRITICAL:
                    severity += 1
                    details["escalated_by_streak"] = streak
            recommendations = recommendations_for(anomaly_type, severity)
            if sample.battery_level is not None and sample.battery_level < cfg.low_battery_pct:
                details["battery_low"] = sample.battery_level
                recommendations += ("Device battery low; request a check-in before contact is lost",)
            actions = _ACTIONS.get(severity, ())
            if panic and AUTO_ESCALATE not in actions:
                actions = (AUTO_ESCALATE,) + actions

        return AnomalyResult(
            tourist_id=sample.tourist_id,
            timestamp=sample.timestamp,
            is_anomaly=is_anomaly,
            anomaly_type=anomaly_type,
            severity=severity,
            confidence=self._confidence(rule_score, ml_score),
            anomaly_score=anomaly_score,
            rule_based_score=rule_score,
            ml_based_score=ml_score,
            details=details,
            recommendations=recommendations,
            actions_taken=actions,
        )
