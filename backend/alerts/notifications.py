"""
Notification Payloads
Turns a (rule, finding, subject) trigger into one payload per channel.

Delivery itself is someone else's job: payloads go to a NotificationSink.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from core.models import Subject
from detection.models import AnomalyType, Finding, Severity

from .models import AlertRule


CATEGORY_BY_TYPE = {
    AnomalyType.HEALTH_DECLINE: "health",
    AnomalyType.FREQUENCY: "frequency",
    AnomalyType.PATTERN_CHANGE: "pattern",
    AnomalyType.CONSISTENCY_CHANGE: "pattern",
}

PRIORITY_BY_SEVERITY = {
    Severity.LOW: "low",
    Severity.MEDIUM: "normal",
    Severity.HIGH: "high",
}

TYPE_TITLES = {
    AnomalyType.FREQUENCY: "Abnormal frequency",
    AnomalyType.HEALTH_DECLINE: "Health decline",
    AnomalyType.PATTERN_CHANGE: "Pattern change",
    AnomalyType.CONSISTENCY_CHANGE: "Consistency change",
}

EMAIL_RECOMMENDATIONS = 3
PUSH_RECOMMENDATIONS = 2


def category_for(anomaly_type) -> str:
    return CATEGORY_BY_TYPE.get(anomaly_type, "general")


def priority_for(severity) -> str:
    return PRIORITY_BY_SEVERITY.get(severity, "normal")


def title_for(anomaly_type) -> str:
    return TYPE_TITLES.get(anomaly_type, "Health anomaly")


@dataclass
class NotificationPayload:
    """What the sink receives for one channel"""
    user_id: str
    category: str
    title: str
    message: str
    priority: str
    pet_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "pet_id": self.pet_id,
            "category": self.category,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "metadata": self.metadata,
        }


def build_payload(channel: str, rule: AlertRule, finding: Finding, subject: Subject) -> NotificationPayload:
    """
    Build the payload for one channel.

    in_app: "<rule> - <type title>", plain description
    email:  same title, description plus up to 3 recommendations
    push:   bare type title, at most 2 recommendations in metadata
    """
    type_title = title_for(finding.type)
    title = type_title if channel == "push" else f"{rule.name} - {type_title}"

    message = finding.description
    recommendations = list(finding.recommendations)
    if channel == "email" and recommendations:
        bullets = "\n".join(f"• {r}" for r in recommendations[:EMAIL_RECOMMENDATIONS])
        message = f"{finding.description}\n\nSuggested actions:\n{bullets}"
    if channel == "push":
        recommendations = recommendations[:PUSH_RECOMMENDATIONS]

    finding_data = finding.to_dict()
    return NotificationPayload(
        user_id=subject.user_id,
        pet_id=subject.pet_id,
        category=category_for(finding.type),
        title=title,
        message=message,
        priority=priority_for(finding.severity),
        metadata={
            "alert_rule_id": rule.id,
            "anomaly_type": finding.type.value,
            "severity": finding.severity.value,
            "confidence": finding_data["confidence"],
            "recommendations": recommendations,
            "trigger_data": finding_data["trigger_data"],
            "action_url": f"/pets/{subject.pet_id}/health",
        },
    )
