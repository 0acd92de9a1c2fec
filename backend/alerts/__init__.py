"""
Alert System
Rule-based alerts over anomaly findings.

Structure:
    alerts/
    ├── models.py         → AlertRule, TriggerResult, SweepSummary
    ├── matcher.py        → matches / can_fire (pure)
    ├── notifications.py  → per-channel payloads
    ├── statistics.py     → per-user rollup
    └── engine.py         → AlertEngine (evaluation + sweep)

Usage:
    from alerts import get_alert_engine, Subject

    # Get engine
    engine = get_alert_engine()

    # Check one pet
    triggered = await engine.evaluate_subject(Subject("user-1", "pet-1"))

    # Sweep every pet with an active rule
    summary = await engine.run_batch_sweep()
"""

from core.models import Subject

from .models import (
    AlertRule,
    RuleTriggers,
    NotificationChannels,
    RuleFrequency,
    CustomConditions,
    FrequencyOverride,
    HealthDeclineOverride,
    PatternChangeOverride,
    RuleStats,
    DeliveryOutcome,
    TriggerResult,
    SweepError,
    SweepSummary,
    default_rules,
)

from .matcher import matches, can_fire
from .notifications import NotificationPayload, build_payload
from .statistics import alert_statistics

from .engine import (
    AlertEngine,
    build_alert_engine,
    get_alert_engine,
)

__all__ = [
    # Models
    "Subject",
    "AlertRule",
    "RuleTriggers",
    "NotificationChannels",
    "RuleFrequency",
    "CustomConditions",
    "FrequencyOverride",
    "HealthDeclineOverride",
    "PatternChangeOverride",
    "RuleStats",
    "DeliveryOutcome",
    "TriggerResult",
    "SweepError",
    "SweepSummary",
    "default_rules",
    # Matcher
    "matches",
    "can_fire",
    # Notifications
    "NotificationPayload",
    "build_payload",
    "alert_statistics",
    # Engine
    "AlertEngine",
    "build_alert_engine",
    "get_alert_engine",
]
