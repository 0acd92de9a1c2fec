"""
Detection Output Types
Dataclasses for detector results and thresholds.
"""

from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class AnomalyType(str, Enum):
    """Finding types, in detector execution order"""
    FREQUENCY = "frequency"
    HEALTH_DECLINE = "health_decline"
    PATTERN_CHANGE = "pattern_change"
    CONSISTENCY_CHANGE = "consistency_change"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# THRESHOLDS
# =============================================================================

@dataclass(frozen=True)
class DetectionThresholds:
    """
    Threshold bundle for one detector run.

    Frozen so that identical bundles hash equal and a subject's windows
    are only analysed once per distinct bundle.
    """
    min_per_week: float = 3
    max_per_week: float = 21
    concerning_ratio: float = 0.4
    consecutive_concerning: int = 3
    shape_variation_limit: int = 4
    consistency_change_ratio: float = 0.7

    def with_overrides(self, overrides: Optional[Dict[str, Any]]) -> "DetectionThresholds":
        """
        Return a copy with every non-None override applied.

        Raises:
            ValueError: the merged min_per_week is not below max_per_week
        """
        if not overrides:
            return self
        changes = {k: v for k, v in overrides.items() if v is not None}
        if not changes:
            return self
        merged = replace(self, **changes)
        if merged.min_per_week >= merged.max_per_week:
            raise ValueError(
                f"min_per_week {merged.min_per_week} must be lower than max_per_week {merged.max_per_week}"
            )
        return merged

    @classmethod
    def from_config(cls, config) -> "DetectionThresholds":
        return cls(
            min_per_week=config.min_per_week,
            max_per_week=config.max_per_week,
            concerning_ratio=config.concerning_ratio,
            consecutive_concerning=config.consecutive_concerning,
            shape_variation_limit=config.shape_variation_limit,
            consistency_change_ratio=config.consistency_change_ratio,
        )


DEFAULT_THRESHOLDS = DetectionThresholds()


# =============================================================================
# FINDINGS
# =============================================================================

@dataclass(frozen=True)
class TriggerData:
    """Numbers behind a finding"""
    current_value: float
    expected_value: float
    threshold: float
    timeframe: str


@dataclass(frozen=True)
class Finding:
    """
    One typed, scored detector result.

    Ephemeral: computed on demand, never persisted.
    """
    type: AnomalyType
    is_anomalous: bool
    severity: Severity
    confidence: float          # 0-95
    description: str
    recommendations: List[str] = field(default_factory=list)
    trigger_data: Optional[TriggerData] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "is_anomalous": self.is_anomalous,
            "severity": self.severity.value,
            "confidence": round(self.confidence, 2),
            "description": self.description,
            "recommendations": list(self.recommendations),
            "trigger_data": asdict(self.trigger_data) if self.trigger_data else None,
        }


# =============================================================================
# PATTERN / SUMMARY
# =============================================================================

@dataclass
class HealthPattern:
    """
    Descriptive profile of a subject's recent records.

    Not an anomaly signal on its own; shown alongside findings.
    """
    days: int
    average_frequency: float                 # records per week
    dominant_health_status: str
    health_status_distribution: Dict[str, int]
    shape_distribution: Dict[int, int]
    morning_count: int                       # 06:00-11:59
    afternoon_count: int                     # 12:00-17:59
    evening_count: int                       # 18:00-05:59

    def to_dict(self) -> Dict[str, Any]:
        return {
            "days": self.days,
            "average_frequency": round(self.average_frequency, 2),
            "dominant_health_status": self.dominant_health_status,
            "health_status_distribution": self.health_status_distribution,
            "shape_distribution": {str(k): v for k, v in self.shape_distribution.items()},
            "time_patterns": {
                "morning": self.morning_count,
                "afternoon": self.afternoon_count,
                "evening": self.evening_count,
            },
        }


@dataclass
class DetectionSummary:
    has_anomalies: bool
    total: int
    high_count: int
    medium_count: int
    low_count: int
    overall_risk: Severity
    recommendations: List[str]
    most_recent: Optional[Finding] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_anomalies": self.has_anomalies,
            "total": self.total,
            "high_count": self.high_count,
            "medium_count": self.medium_count,
            "low_count": self.low_count,
            "overall_risk": self.overall_risk.value,
            "recommendations": self.recommendations,
            "most_recent": self.most_recent.to_dict() if self.most_recent else None,
        }
