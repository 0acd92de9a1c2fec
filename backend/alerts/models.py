"""
Alert Models
Data structures for alert rules, trigger results and sweep summaries.

Rules are immutable snapshots: the matcher reads them, the rule store
writes new versions. Nothing in this module touches storage.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.models import Subject
from detection.models import AnomalyType, DetectionThresholds, Finding, Severity

logger = logging.getLogger(__name__)

CHANNELS = ("in_app", "email", "push")


def new_rule_id() -> str:
    return f"rule_{uuid.uuid4().hex[:12]}"


# =============================================================================
# Rule parts
# =============================================================================

class RuleTriggers(BaseModel):
    """Which findings a rule reacts to"""
    model_config = ConfigDict(frozen=True)

    anomaly_types: List[AnomalyType] = Field(..., min_length=1)
    severity_levels: List[Severity] = Field(..., min_length=1)
    minimum_confidence: float = Field(default=70, ge=0, le=100)


class NotificationChannels(BaseModel):
    model_config = ConfigDict(frozen=True)

    in_app: bool = True
    email: bool = False
    push: bool = False

    def enabled(self) -> List[str]:
        """Enabled channel names, in dispatch order"""
        return [c for c in CHANNELS if getattr(self, c)]


class RuleFrequency(BaseModel):
    """Rate limits for one rule"""
    model_config = ConfigDict(frozen=True)

    max_per_day: int = Field(default=3, ge=1, le=10)
    max_per_week: int = Field(default=10, ge=1, le=50)
    cooldown_hours: float = Field(default=6, ge=1, le=72)


class FrequencyOverride(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_per_week: Optional[float] = Field(default=None, ge=1, le=50)
    max_per_week: Optional[float] = Field(default=None, ge=1, le=100)


class HealthDeclineOverride(BaseModel):
    model_config = ConfigDict(frozen=True)

    concerning_ratio: Optional[float] = Field(default=None, ge=0.1, le=1.0)
    consecutive_concerning: Optional[int] = Field(default=None, ge=2, le=10)


class PatternChangeOverride(BaseModel):
    model_config = ConfigDict(frozen=True)

    shape_variation_limit: Optional[int] = Field(default=None, ge=2, le=7)
    consistency_change_ratio: Optional[float] = Field(default=None, ge=0.1, le=1.0)


class CustomConditions(BaseModel):
    """Per-rule detection threshold overrides"""
    model_config = ConfigDict(frozen=True)

    frequency_threshold: Optional[FrequencyOverride] = None
    health_decline_threshold: Optional[HealthDeclineOverride] = None
    pattern_change_threshold: Optional[PatternChangeOverride] = None

    def threshold_overrides(self) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        for part in (self.frequency_threshold, self.health_decline_threshold, self.pattern_change_threshold):
            if part is not None:
                overrides.update(part.model_dump(exclude_none=True))
        return overrides


class RuleStats(BaseModel):
    """
    Trigger counters.

    recent_triggers holds the newest max_per_week trigger times, oldest
    first, whatever their age. The daily and weekly caps count the ones
    inside their window.
    """
    model_config = ConfigDict(frozen=True)

    total_triggered: int = Field(default=0, ge=0)
    last_triggered: Optional[datetime] = None
    total_notifications_sent: int = Field(default=0, ge=0)
    recent_triggers: List[datetime] = Field(default_factory=list)


# =============================================================================
# AlertRule
# =============================================================================

class AlertRule(BaseModel):
    """
    User-defined alert rule.

    Example:
        "Tell me in-app and by email when health declines with
         medium or high severity and at least 70% confidence"

    A rule without pet_id applies to every pet of its user.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_rule_id)
    user_id: str = Field(..., min_length=1)
    pet_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True
    triggers: RuleTriggers
    notifications: NotificationChannels = Field(default_factory=NotificationChannels)
    frequency: RuleFrequency = Field(default_factory=RuleFrequency)
    custom_conditions: Optional[CustomConditions] = None
    stats: RuleStats = Field(default_factory=RuleStats)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator('id', mode='before')
    @classmethod
    def ensure_id(cls, v):
        return v or new_rule_id()

    @model_validator(mode='after')
    def check_limits(self):
        if self.frequency.max_per_day > self.frequency.max_per_week:
            raise ValueError("max_per_day cannot exceed max_per_week")

        freq = self.custom_conditions.frequency_threshold if self.custom_conditions else None
        if freq and freq.min_per_week is not None and freq.max_per_week is not None:
            if freq.min_per_week >= freq.max_per_week:
                raise ValueError("custom min_per_week must be lower than max_per_week")
        return self

    def applies_to(self, pet_id: str) -> bool:
        return self.pet_id is None or self.pet_id == pet_id

    def thresholds(self, base: DetectionThresholds) -> DetectionThresholds:
        """
        Detection thresholds for this rule: base plus custom overrides.

        A one-sided frequency override that crosses the base bound is
        dropped, keeping the base min/max pair.
        """
        if self.custom_conditions is None:
            return base
        overrides = self.custom_conditions.threshold_overrides()
        try:
            return base.with_overrides(overrides)
        except ValueError as e:
            logger.warning("Rule %s: ignoring frequency override (%s)", self.id, e)
            overrides.pop("min_per_week", None)
            overrides.pop("max_per_week", None)
            return base.with_overrides(overrides)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertRule":
        return cls.model_validate(data)


def default_rules(user_id: str) -> List[AlertRule]:
    """The three rules every new user starts with"""
    return [
        AlertRule(
            user_id=user_id,
            name="Health decline warning",
            description="Warn when the pet's health status keeps getting worse",
            triggers=RuleTriggers(
                anomaly_types=[AnomalyType.HEALTH_DECLINE],
                severity_levels=[Severity.MEDIUM, Severity.HIGH],
                minimum_confidence=70,
            ),
            notifications=NotificationChannels(in_app=True, email=True),
            frequency=RuleFrequency(max_per_day=2, max_per_week=5, cooldown_hours=12),
        ),
        AlertRule(
            user_id=user_id,
            name="Abnormal frequency",
            description="Remind when records are too frequent or too rare",
            triggers=RuleTriggers(
                anomaly_types=[AnomalyType.FREQUENCY],
                severity_levels=[Severity.MEDIUM, Severity.HIGH],
                minimum_confidence=60,
            ),
            notifications=NotificationChannels(in_app=True, email=False),
            frequency=RuleFrequency(max_per_day=1, max_per_week=3, cooldown_hours=24),
        ),
        AlertRule(
            user_id=user_id,
            name="Pattern change",
            description="Notify when the usual pattern changes significantly",
            triggers=RuleTriggers(
                anomaly_types=[AnomalyType.PATTERN_CHANGE, AnomalyType.CONSISTENCY_CHANGE],
                severity_levels=[Severity.HIGH],
                minimum_confidence=80,
            ),
            notifications=NotificationChannels(in_app=True, email=True),
            frequency=RuleFrequency(max_per_day=1, max_per_week=2, cooldown_hours=48),
        ),
    ]


# =============================================================================
# Trigger results
# =============================================================================

@dataclass
class DeliveryOutcome:
    """Per-channel delivery result of one trigger"""
    in_app: bool = False
    email: bool = False
    push: bool = False

    def delivered_count(self) -> int:
        return sum(1 for c in CHANNELS if getattr(self, c))

    def to_dict(self) -> Dict[str, bool]:
        return {"in_app": self.in_app, "email": self.email, "push": self.push}


@dataclass
class TriggerResult:
    """
    One (finding, rule) match that fired.

    Counts as fired even when every channel failed to deliver.
    """
    rule_id: str
    rule_name: str
    subject: Subject
    finding: Finding
    delivered: DeliveryOutcome
    triggered_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "user_id": self.subject.user_id,
            "pet_id": self.subject.pet_id,
            "finding": self.finding.to_dict(),
            "notifications_sent": self.delivered.to_dict(),
            "triggered_at": self.triggered_at.isoformat(),
        }


@dataclass
class SweepError:
    subject: Subject
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {**self.subject.to_dict(), "error": self.error}


@dataclass
class SweepSummary:
    """Outcome of one batch sweep over all subjects with active rules"""
    checked: int = 0
    triggered: int = 0
    skipped: int = 0
    errors: List[SweepError] = field(default_factory=list)
    results: List[TriggerResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "triggered": self.triggered,
            "skipped": self.skipped,
            "errors": [e.to_dict() for e in self.errors],
            "results": [r.to_dict() for r in self.results],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
