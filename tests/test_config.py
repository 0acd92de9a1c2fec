"""
Tests - Settings and logging setup
"""

import logging

import pytest
from pydantic import ValidationError

from core.config import Settings, ThresholdConfig, configure_logging, reload_settings
from detection import DetectionThresholds


ENV_VARS = [
    "ALERTS_ANALYSIS_WINDOW_DAYS",
    "ALERTS_BASELINE_WINDOW_DAYS",
    "ALERTS_MIN_PER_WEEK",
    "ALERTS_MAX_PER_WEEK",
    "ALERTS_CONCERNING_RATIO",
    "ALERTS_CONSECUTIVE_CONCERNING",
    "ALERTS_SHAPE_VARIATION_LIMIT",
    "ALERTS_CONSISTENCY_CHANGE_RATIO",
    "ALERTS_MAX_CONCURRENCY",
    "ALERTS_SUBJECT_TIMEOUT",
    "ALERTS_SWEEP_INTERVAL_MINUTES",
    "ALERTS_DB_PATH",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings()

    assert settings.analysis_window_days == 14
    assert settings.baseline_window_days == 30
    assert settings.max_concurrency == 8
    assert settings.subject_timeout_seconds == 30.0
    assert settings.sweep_interval_minutes == 60.0
    assert settings.db_path == "data/alerts.db"
    assert settings.log_level == "INFO"
    assert DetectionThresholds.from_config(settings.thresholds) == DetectionThresholds()


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("ALERTS_ANALYSIS_WINDOW_DAYS", "7")
    monkeypatch.setenv("ALERTS_MIN_PER_WEEK", "2")
    monkeypatch.setenv("ALERTS_MAX_CONCURRENCY", "16")
    monkeypatch.setenv("ALERTS_SWEEP_INTERVAL_MINUTES", "0")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = reload_settings()

    assert settings.analysis_window_days == 7
    assert settings.thresholds.min_per_week == 2.0
    assert settings.max_concurrency == 16
    assert settings.sweep_interval_minutes == 0
    assert settings.log_level == "DEBUG"


def test_analysis_window_longer_than_baseline(monkeypatch):
    monkeypatch.setenv("ALERTS_ANALYSIS_WINDOW_DAYS", "40")

    with pytest.raises(ValidationError):
        Settings()


def test_invalid_values(monkeypatch):
    with pytest.raises(ValidationError):
        Settings(max_concurrency=0)
    with pytest.raises(ValidationError):
        Settings(log_level="LOUD")
    with pytest.raises(ValidationError):
        ThresholdConfig(min_per_week=10, max_per_week=5)


def test_configure_logging_installs_one_handler():
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        configure_logging("warning")
        configure_logging("DEBUG")

        ours = [h for h in root.handlers if getattr(h, "_alerts_handler", False)]
        assert len(ours) == 1
        assert root.level == logging.DEBUG
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
        root.setLevel(level)
        reload_settings()
