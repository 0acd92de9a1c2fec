"""
Configuration
Environment-driven settings for detection windows, thresholds and the sweep.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


load_dotenv()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ThresholdConfig(BaseModel):
    """Default detection thresholds"""
    model_config = ConfigDict(validate_default=True)

    min_per_week: float = Field(default_factory=lambda: float(os.getenv("ALERTS_MIN_PER_WEEK", "3")))
    max_per_week: float = Field(default_factory=lambda: float(os.getenv("ALERTS_MAX_PER_WEEK", "21")))
    concerning_ratio: float = Field(
        default_factory=lambda: float(os.getenv("ALERTS_CONCERNING_RATIO", "0.4"))
    )
    consecutive_concerning: int = Field(
        default_factory=lambda: int(os.getenv("ALERTS_CONSECUTIVE_CONCERNING", "3"))
    )
    shape_variation_limit: int = Field(
        default_factory=lambda: int(os.getenv("ALERTS_SHAPE_VARIATION_LIMIT", "4"))
    )
    consistency_change_ratio: float = Field(
        default_factory=lambda: float(os.getenv("ALERTS_CONSISTENCY_CHANGE_RATIO", "0.7"))
    )

    @model_validator(mode="after")
    def check_frequency_range(self):
        if self.min_per_week >= self.max_per_week:
            raise ValueError("min_per_week must be lower than max_per_week")
        return self


class Settings(BaseModel):
    """Master configuration"""
    model_config = ConfigDict(validate_default=True)

    analysis_window_days: int = Field(
        default_factory=lambda: int(os.getenv("ALERTS_ANALYSIS_WINDOW_DAYS", "14")), ge=1
    )
    baseline_window_days: int = Field(
        default_factory=lambda: int(os.getenv("ALERTS_BASELINE_WINDOW_DAYS", "30")), ge=1
    )
    thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig)
    max_concurrency: int = Field(
        default_factory=lambda: int(os.getenv("ALERTS_MAX_CONCURRENCY", "8")), ge=1
    )
    subject_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("ALERTS_SUBJECT_TIMEOUT", "30")), gt=0
    )
    sweep_interval_minutes: float = Field(
        default_factory=lambda: float(os.getenv("ALERTS_SWEEP_INTERVAL_MINUTES", "60")), ge=0
    )
    db_path: str = Field(default_factory=lambda: os.getenv("ALERTS_DB_PATH", "data/alerts.db"))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    @field_validator("log_level", mode="before")
    @classmethod
    def check_log_level(cls, v):
        level = str(v).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @model_validator(mode="after")
    def check_windows(self):
        if self.analysis_window_days > self.baseline_window_days:
            raise ValueError("analysis_window_days must not exceed baseline_window_days")
        return self


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Rebuild settings from the current environment"""
    global _settings
    _settings = Settings()
    return _settings


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger"""
    root = logging.getLogger()
    if not any(getattr(h, "_alerts_handler", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._alerts_handler = True
        root.addHandler(handler)
    root.setLevel(level.upper())
