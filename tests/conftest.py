"""Shared test fixtures."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

import anomaly_service.main as main_module
from anomaly_service.config import AppConfig
from anomaly_service.core.stats import ServiceStats
from anomaly_service.core.training import TrainingService

T0 = datetime(2025, 3, 14, 10, 0, tzinfo=timezone.utc)


def make_raw(tourist_id: str = "tourist-001", seconds: float = 0, **overrides) -> dict:
    """A calm walking sample; override fields to provoke rules."""
    raw = {
        "touristId": tourist_id,
        "ts": (T0 + timedelta(seconds=seconds)).isoformat(),
        "lat": 26.9124,
        "lng": 75.7873,
        "speed": 4.0,
        "deviationMeters": 0.0,
        "in_alert_zone": 0,
        "points_last_5m": 4,
        "location_risk_score": 1.0,
        "accelerometer_magnitude": 1.0,
        "battery_level": 80.0,
        "panic_button_pressed": False,
    }
    raw.update(overrides)
    return raw


def make_training_records(n: int = 200, seed: int = 7) -> list[dict]:
    """Ordinary walking telemetry for fitting the model."""
    rng = random.Random(seed)
    return [
        {
            "speed": rng.uniform(2.0, 8.0),
            "deviationMeters": rng.uniform(0.0, 50.0),
            "accelerometer_magnitude": rng.uniform(0.9, 1.3),
            "location_risk_score": rng.uniform(0.0, 3.0),
            "points_last_5m": rng.randint(2, 6),
        }
        for _ in range(n)
    ]


@pytest.fixture
def config() -> AppConfig:
    config = AppConfig()
    config.logging.level = "warning"
    config.model.n_estimators = 50
    return config


@pytest.fixture(autouse=True)
def _init_service(tmp_path, config):
    """Initialize service singletons for every test, using a temp directory."""
    config.storage.base_dir = str(tmp_path / "verdicts")

    stats = ServiceStats(active_window_seconds=config.limits.active_window_seconds)
    training = TrainingService(config.model)
    detector = main_module.build_detector(config, stats, training)

    # Patch module-level singletons
    main_module._config = config
    main_module._stats = stats
    main_module._training = training
    main_module._detector = detector
    main_module._train_cancel.clear()

    yield

    detector.close()
    # Cleanup
    main_module._config = None
    main_module._stats = None
    main_module._training = None
    main_module._detector = None


@pytest.fixture
def detector():
    return main_module.get_detector()


@pytest.fixture
def training():
    return main_module.get_training()


@pytest.fixture
async def client():
    from anomaly_service.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
