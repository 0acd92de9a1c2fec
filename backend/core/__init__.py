"""
Core Module
Shared record types, configuration and errors.

Exports:
    Models: EventRecord, HealthStatus, Subject
    Converters: records_frame
    Config: Settings, get_settings, configure_logging
    Errors: AlertEngineError and subclasses
"""

from .models import (
    EventRecord,
    HealthStatus,
    Subject,
    RECORD_COLUMNS,
    records_frame,
)

from .config import (
    Settings,
    ThresholdConfig,
    get_settings,
    reload_settings,
    configure_logging,
)

from .exceptions import (
    AlertEngineError,
    RecordReaderError,
    RuleStoreError,
    StaleRuleStateError,
    RuleNotFoundError,
    InvalidWindowError,
    InsufficientDataError,
)

__all__ = [
    # Models
    "EventRecord",
    "HealthStatus",
    "Subject",
    "RECORD_COLUMNS",
    "records_frame",
    # Config
    "Settings",
    "ThresholdConfig",
    "get_settings",
    "reload_settings",
    "configure_logging",
    # Errors
    "AlertEngineError",
    "RecordReaderError",
    "RuleStoreError",
    "StaleRuleStateError",
    "RuleNotFoundError",
    "InvalidWindowError",
    "InsufficientDataError",
]
