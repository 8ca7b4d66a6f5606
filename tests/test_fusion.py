"""Tests for score fusion, severity, confidence, and actions."""

from __future__ import annotations

import pytest

from conftest import make_raw

from anomaly_service.config import FusionConfig
from anomaly_service.core.fusion import AUTO_ESCALATE, NOTIFY_AUTHORITY, FusionEngine, recommendations_for
from anomaly_service.core.models import (
    DISTRESS_PATTERN,
    ERRATIC_MOVEMENT,
    FALL_DETECTED,
    NONE,
    ROUTE_DEVIATION,
)
from anomaly_service.core.rules import RuleOutcome
from anomaly_service.core.telemetry import parse_sample


@pytest.fixture
def engine():
    return FusionEngine(FusionConfig())


def _fuse(engine, rule_score=0.0, rule_type=NONE, ml_score=0.0, streak=0, **overrides):
    sample = parse_sample(make_raw(**overrides))
    rules = RuleOutcome(score=rule_score, anomaly_type=rule_type if rule_score > 0 else NONE)
    return engine.fuse(sample, rules, ml_score, {}, streak)


def test_normal_verdict(engine):
    result = _fuse(engine)
    assert result.is_anomaly is False
    assert result.anomaly_type == NONE
    assert result.severity is None
    assert result.actions_taken == ()
    assert result.recommendations == ()
    assert result.confidence == 1.0
    assert "severity" not in result.to_dict()


def test_weighted_blend(engine):
    result = _fuse(engine, rule_score=0.5, rule_type=ROUTE_DEVIATION, ml_score=0.75)
    assert result.anomaly_score == pytest.approx(0.6 * 0.5 + 0.4 * 0.75)
    assert result.is_anomaly is True
    assert result.anomaly_type == ROUTE_DEVIATION
    assert result.severity == 2


def test_rules_alone_can_flag(engine):
    result = _fuse(engine, rule_score=1.0, rule_type=ROUTE_DEVIATION)
    assert result.anomaly_score == pytest.approx(0.6)
    assert result.is_anomaly is True
    assert result.severity == 2
    # Only one scorer fired: confidence floor applies.
    assert result.confidence == pytest.approx(0.3)


def test_severity_cutoffs(engine):
    high = _fuse(engine, rule_score=1.0, rule_type=FALL_DETECTED, ml_score=0.3)
    assert high.anomaly_score == pytest.approx(0.72)
    assert high.severity == 3
    assert high.actions_taken == (NOTIFY_AUTHORITY,)
    critical = _fuse(engine, rule_score=1.0, rule_type=FALL_DETECTED, ml_score=1.0)
    assert critical.severity == 4
    assert critical.actions_taken == (AUTO_ESCALATE, NOTIFY_AUTHORITY)
    assert critical.recommendations[0] == "Dispatch immediate medical response"


def test_panic_overrides_everything(engine):
    result = _fuse(engine, rule_score=1.0, rule_type=DISTRESS_PATTERN, ml_score=0.0,
                   panic_button_pressed=True)
    assert result.anomaly_score == 1.0
    assert result.is_anomaly is True
    assert result.severity == 4
    assert result.anomaly_type == DISTRESS_PATTERN
    assert AUTO_ESCALATE in result.actions_taken


def test_ml_only_anomaly_gets_generic_label(engine):
    result = _fuse(engine, rule_score=0.0, ml_score=1.0, deviationMeters=0.0)
    assert result.anomaly_score == pytest.approx(0.4)
    assert result.is_anomaly is False

    lenient = FusionEngine(FusionConfig(anomaly_cutoff=0.3))
    result = _fuse(lenient, rule_score=0.0, ml_score=1.0)
    assert result.is_anomaly is True
    assert result.anomaly_type == ERRATIC_MOVEMENT


def test_streak_escalates_severity(engine):
    base = _fuse(engine, rule_score=1.0, rule_type=ROUTE_DEVIATION, streak=2)
    escalated = _fuse(engine, rule_score=1.0, rule_type=ROUTE_DEVIATION, streak=3)
    assert base.severity == 2
    assert escalated.severity == 3
    assert escalated.details["escalated_by_streak"] == 3
    assert escalated.actions_taken == (NOTIFY_AUTHORITY,)


def test_streak_caps_at_critical(engine):
    result = _fuse(engine, rule_score=1.0, rule_type=FALL_DETECTED, ml_score=1.0, streak=10)
    assert result.severity == 4


def test_confidence_reflects_agreement(engine):
    result = _fuse(engine, rule_score=0.8, rule_type=ROUTE_DEVIATION, ml_score=0.6)
    assert result.confidence == pytest.approx(0.8)


def test_low_battery_adds_recommendation(engine):
    result = _fuse(engine, rule_score=1.0, rule_type=ROUTE_DEVIATION, battery_level=8.0)
    assert result.details["battery_low"] == 8.0
    assert "battery" in result.recommendations[-1]


def test_recommendation_fallbacks():
    assert recommendations_for(ROUTE_DEVIATION, 1) == ("Monitor; no action required",)
    # No Critical entry for "stopped": falls back to the High guidance.
    assert recommendations_for("stopped", 4) == recommendations_for("stopped", 3)
    assert recommendations_for("unheard_of", 2) == ("Send check-in request to tourist",)


def test_sub_threshold_rule_reads_as_normal(engine):
    result = _fuse(engine, rule_score=0.4, rule_type=ROUTE_DEVIATION, ml_score=0.2)
    assert result.is_anomaly is False
    assert result.anomaly_type == NONE
    assert result.severity is None
