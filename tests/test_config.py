"""Tests for YAML config loading and environment overrides."""

from __future__ import annotations

import structlog

import anomaly_service.main as main_module
from anomaly_service.config import AppConfig, load_config


def test_defaults_without_file(tmp_path):
    config = load_config(tmp_path / "missing.yaml")
    assert config == AppConfig()
    assert config.server.port == 8001
    assert config.fusion.rule_weight == 0.6
    assert config.store.history_capacity == 200


def test_yaml_sections_override_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "detection:\n"
        "  speed_cap_kmh: 90.0\n"
        "  deviation_threshold_m: 300.0\n"
        "store:\n"
        "  history_capacity: 50\n"
        "unknown_section:\n"
        "  whatever: 1\n"
    )
    config = load_config(path)
    assert config.detection.speed_cap_kmh == 90.0
    assert config.detection.deviation_threshold_m == 300.0
    assert config.store.history_capacity == 50
    # Untouched fields keep their defaults.
    assert config.detection.deviation_cap_m == 2000.0


def test_env_overrides_win(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("model:\n  contamination: 0.1\n")
    monkeypatch.setenv("ANOMALY_MODEL_CONTAMINATION", "0.2")
    monkeypatch.setenv("ANOMALY_LIMITS_MAX_BATCH_SIZE", "25")
    monkeypatch.setenv("ANOMALY_SERVER_ENV", "prod")
    config = load_config(path)
    assert config.model.contamination == 0.2
    assert config.limits.max_batch_size == 25
    assert config.server.env == "prod"


def test_log_aliases(tmp_path, monkeypatch):
    monkeypatch.setenv("ANOMALY_LOG_LEVEL", "debug")
    monkeypatch.setenv("ANOMALY_LOG_FORMAT", "json")
    config = load_config(tmp_path / "missing.yaml")
    assert config.logging.level == "debug"
    assert config.logging.format == "json"


def test_config_path_from_env(tmp_path, monkeypatch):
    path = tmp_path / "elsewhere.yaml"
    path.write_text("server:\n  port: 9100\n")
    monkeypatch.setenv("ANOMALY_CONFIG", str(path))
    assert load_config().server.port == 9100


def test_log_file_closed_on_teardown(tmp_path, config):
    config.logging.file = str(tmp_path / "service.log")
    config.logging.format = "json"
    try:
        main_module._setup_logging(config)
        handle = main_module._log_file
        structlog.get_logger().warning("file_logging_check")
        main_module._close_log_file()
    finally:
        structlog.reset_defaults()

    assert handle.closed
    assert main_module._log_file is None
    assert "file_logging_check" in (tmp_path / "service.log").read_text()
