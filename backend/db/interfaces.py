"""
Storage Contracts
The three narrow interfaces the engine talks to.

Anything that satisfies these protocols can back the engine: the SQLite
adapter in db/sqlite.py, or in-memory fakes in tests.
"""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Protocol

from core.models import EventRecord, Subject

if TYPE_CHECKING:
    from alerts.models import AlertRule
    from alerts.notifications import NotificationPayload


class RecordReader(Protocol):
    def fetch(
        self,
        subject_id: str,
        start: datetime,
        end: Optional[datetime] = None
    ) -> List[EventRecord]:
        """
        Records with start <= timestamp (< end, when end is given),
        oldest first.
        """
        ...


class RuleStore(Protocol):
    def active_rules_for(self, user_id: str, pet_id: Optional[str] = None) -> List["AlertRule"]:
        """Active rules of the user; with pet_id, that pet's rules plus user-wide ones"""
        ...

    def active_subjects(self) -> List[Subject]:
        """Distinct subjects covered by at least one active rule"""
        ...

    def record_trigger(
        self,
        rule_id: str,
        expected_last_triggered: Optional[datetime],
        triggered_at: datetime
    ) -> "AlertRule":
        """
        Claim a trigger: total_triggered += 1, last_triggered = triggered_at.

        Only applies if last_triggered still equals expected_last_triggered;
        raises StaleRuleStateError otherwise.
        """
        ...

    def add_notifications_sent(self, rule_id: str, count: int) -> "AlertRule":
        ...


class NotificationSink(Protocol):
    def deliver(self, channel: str, payload: "NotificationPayload") -> bool:
        ...
