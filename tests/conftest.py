"""
Shared fixtures and in-memory fakes for the three storage contracts.
"""

import threading
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import pytest

from alerts import (
    AlertRule,
    NotificationChannels,
    RuleFrequency,
    RuleStats,
    RuleTriggers,
)
from core.exceptions import RecordReaderError, RuleNotFoundError, StaleRuleStateError
from core.models import EventRecord, Subject
from detection import AnomalyDetector


NOW = datetime(2026, 10, 18, 15, 0, 0)


# =============================================================================
# Record helpers
# =============================================================================

def make_records(
    pet_id: str,
    shapes: Iterable[int],
    statuses: Optional[Iterable[str]] = None,
    end: datetime = NOW,
    step: timedelta = timedelta(days=1),
    confidence: float = 90.0
) -> List[EventRecord]:
    """Records spaced `step` apart, the last one `step` before `end`, oldest first"""
    shapes = list(shapes)
    statuses = list(statuses) if statuses is not None else ["healthy"] * len(shapes)
    n = len(shapes)
    return [
        EventRecord(
            subject_id=pet_id,
            timestamp=end - step * (n - i),
            shape_code=shape,
            health_status=status,
            confidence=confidence,
        )
        for i, (shape, status) in enumerate(zip(shapes, statuses))
    ]


def baseline_records(pet_id: str, now: datetime = NOW, count: int = 10) -> List[EventRecord]:
    """Healthy shape-4 records inside the default baseline window"""
    return make_records(pet_id, [4] * count, end=now - timedelta(days=15))


def decline_records(pet_id: str, now: datetime = NOW) -> List[EventRecord]:
    """
    Six concerning records in the last week on top of a healthy baseline.

    Only the health_decline detector fires on this (high, confidence 95).
    """
    recent = make_records(pet_id, [4] * 6, ["concerning"] * 6, end=now)
    return baseline_records(pet_id, now) + recent


# =============================================================================
# Fakes
# =============================================================================

class FakeRecordReader:
    def __init__(self, records: Iterable[EventRecord] = (), failing: Iterable[str] = ()):
        self.records: Dict[str, List[EventRecord]] = {}
        self.failing = set(failing)
        self.calls = []
        self.add(records)

    def add(self, records: Iterable[EventRecord]):
        for r in records:
            self.records.setdefault(r.subject_id, []).append(r)

    def fetch(self, subject_id, start, end=None):
        self.calls.append((subject_id, start, end))
        if subject_id in self.failing:
            raise RecordReaderError(f"reader down for {subject_id}")
        rows = [
            r for r in self.records.get(subject_id, [])
            if r.timestamp >= start and (end is None or r.timestamp < end)
        ]
        return sorted(rows, key=lambda r: r.timestamp)


class FakeRuleStore:
    """Rule store with the same conditional trigger write as the SQLite adapter"""

    def __init__(self, rules: Iterable[AlertRule] = (), pets: Optional[Dict[str, List[str]]] = None):
        self.rules: Dict[str, AlertRule] = {r.id: r for r in rules}
        self.pets = pets or {}
        self._lock = threading.Lock()
        self.notification_updates = []

    def active_rules_for(self, user_id, pet_id=None):
        return [
            r for r in self.rules.values()
            if r.user_id == user_id and r.is_active and (pet_id is None or r.applies_to(pet_id))
        ]

    def active_subjects(self):
        subjects = set()
        for r in self.rules.values():
            if not r.is_active:
                continue
            if r.pet_id is not None:
                subjects.add(Subject(r.user_id, r.pet_id))
            else:
                subjects.update(Subject(r.user_id, p) for p in self.pets.get(r.user_id, []))
        return sorted(subjects)

    def record_trigger(self, rule_id, expected_last_triggered, triggered_at):
        with self._lock:
            rule = self.rules.get(rule_id)
            if rule is None:
                raise RuleNotFoundError(rule_id)
            if rule.stats.last_triggered != expected_last_triggered:
                raise StaleRuleStateError(rule_id)
            stats = RuleStats(
                total_triggered=rule.stats.total_triggered + 1,
                last_triggered=triggered_at,
                total_notifications_sent=rule.stats.total_notifications_sent,
                recent_triggers=[*rule.stats.recent_triggers, triggered_at],
            )
            rule = rule.model_copy(update={"stats": stats})
            self.rules[rule_id] = rule
            return rule

    def add_notifications_sent(self, rule_id, count):
        with self._lock:
            rule = self.rules.get(rule_id)
            if rule is None:
                raise RuleNotFoundError(rule_id)
            self.notification_updates.append((rule_id, count))
            stats = rule.stats.model_copy(
                update={"total_notifications_sent": rule.stats.total_notifications_sent + count}
            )
            rule = rule.model_copy(update={"stats": stats})
            self.rules[rule_id] = rule
            return rule


class FakeSink:
    def __init__(self, failing_channels: Iterable[str] = ()):
        self.failing = set(failing_channels)
        self.delivered = []

    def deliver(self, channel, payload):
        if channel in self.failing:
            raise ConnectionError(f"{channel} gateway unreachable")
        self.delivered.append((channel, payload))
        return True


# =============================================================================
# Rule helper
# =============================================================================

def make_rule(
    user_id: str = "user-1",
    pet_id: Optional[str] = "pet-1",
    types=("health_decline",),
    severities=("low", "medium", "high"),
    minimum_confidence: float = 50,
    channels: Optional[dict] = None,
    frequency: Optional[dict] = None,
    name: str = "Test rule",
    **kwargs
) -> AlertRule:
    return AlertRule(
        user_id=user_id,
        pet_id=pet_id,
        name=name,
        triggers=RuleTriggers(
            anomaly_types=list(types),
            severity_levels=list(severities),
            minimum_confidence=minimum_confidence,
        ),
        notifications=NotificationChannels(**(channels or {"in_app": True})),
        frequency=RuleFrequency(**(frequency or {})),
        **kwargs
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def reader():
    return FakeRecordReader()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def detector(reader):
    return AnomalyDetector(reader)
