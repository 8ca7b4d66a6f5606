"""Service configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: ANOMALY_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8001
    env: str = "dev"  # "dev" or "prod"


@dataclass
class DetectionConfig:
    """Thresholds for the rule-based scorer."""
    fall_multiplier: float = 2.5
    fall_saturation: float = 4.0
    fall_floor: float = 0.5
    deviation_threshold_m: float = 500.0
    deviation_cap_m: float = 2000.0
    speed_cap_kmh: float = 120.0
    speed_baseline_multiplier: float = 3.0
    speed_baseline_floor_kmh: float = 30.0
    inactivity_threshold_s: float = 30 * 60
    stopped_threshold_s: float = 10 * 60
    stopped_speed_kmh: float = 0.5
    low_activity_points: int = 2
    erratic_window: int = 5
    erratic_speed_std_kmh: float = 20.0
    erratic_heading_deg: float = 90.0
    erratic_min_displacement_m: float = 5.0
    ramp_floor: float = 0.3


@dataclass
class FusionConfig:
    rule_weight: float = 0.6
    ml_weight: float = 0.4
    anomaly_cutoff: float = 0.5
    critical_cutoff: float = 0.85
    high_cutoff: float = 0.65
    streak_escalation: int = 3
    confidence_floor: float = 0.3
    meaningful_score: float = 0.1
    low_battery_pct: float = 15.0


@dataclass
class ModelConfig:
    contamination: float = 0.05
    min_training_records: int = 50
    n_estimators: int = 100
    random_state: int = 42
    path: str = ""  # empty: keep the model in memory only


@dataclass
class StoreConfig:
    history_capacity: int = 200
    baseline_min_samples: int = 10
    moving_speed_kmh: float = 1.0


@dataclass
class QueueConfig:
    max_size: int = 10_000


@dataclass
class StorageConfig:
    backend: str = "none"  # "none" or "file"
    base_dir: str = "data/verdicts"


@dataclass
class LimitsConfig:
    max_batch_size: int = 1000
    active_window_seconds: float = 300.0
    batch_workers: int = 4


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"
    file: str = ""


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _coerce(current, value: str):
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables.

    Every field of every section is reachable as ANOMALY_<SECTION>_<FIELD>,
    e.g. ANOMALY_DETECTION_SPEED_CAP_KMH=100. ANOMALY_LOG_LEVEL and
    ANOMALY_LOG_FORMAT are kept as short aliases for the logging section.
    """
    aliases = {
        "ANOMALY_LOG_LEVEL": ("logging", "level"),
        "ANOMALY_LOG_FORMAT": ("logging", "format"),
        "ANOMALY_LOG_FILE": ("logging", "file"),
    }
    for section_field in fields(config):
        section = getattr(config, section_field.name)
        for f in fields(section):
            env_key = f"ANOMALY_{section_field.name}_{f.name}".upper()
            val = os.environ.get(env_key)
            if val is not None:
                setattr(section, f.name, _coerce(getattr(section, f.name), val))
    for env_key, (section_name, key) in aliases.items():
        val = os.environ.get(env_key)
        if val is not None:
            setattr(getattr(config, section_name), key, val)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    # Try to load YAML
    if config_path is None:
        config_path = Path(os.environ.get("ANOMALY_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section_field in fields(config):
            section = getattr(config, section_field.name)
            for k, v in (raw.get(section_field.name) or {}).items():
                if hasattr(section, k):
                    setattr(section, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
