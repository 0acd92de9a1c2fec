"""
SQLite Storage
Persistent storage layer.

Responsibilities:
- Read event records for a pet (RecordReader)
- Read alert rules and write trigger counters (RuleStore)
- Queue notification payloads in an outbox table (NotificationSink)
- Rule management and the pet registry

NOT responsible for:
- Detection (done in detection/)
- Deciding whether a rule fires (done in alerts/)
- Actually sending email/push (outbox consumers do this)
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Type

from alerts.models import AlertRule, default_rules
from alerts.notifications import NotificationPayload
from core.exceptions import (
    AlertEngineError,
    RecordReaderError,
    RuleNotFoundError,
    RuleStoreError,
    StaleRuleStateError,
)
from core.models import EventRecord, Subject

logger = logging.getLogger(__name__)


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width ISO text so that SQL string comparison orders correctly"""
    return value.isoformat(timespec="microseconds") if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStorage:
    """
    SQLite persistence for records, rules and notifications.

    Tables:
        - pets: Pet registry (pet -> owner)
        - records: Event records
        - alert_rules: Rules with their counters
        - rule_triggers: One row per fired trigger
        - notifications: Outbox of payloads per channel

    Every call opens its own connection, so one instance can be shared
    between worker threads.
    """

    def __init__(self, db_path: str = "data/alerts.db"):
        self.db_path = db_path
        self._ensure_directory()
        self._init_schema()

    def _ensure_directory(self):
        """Create data directory"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _connect(self, error: Type[AlertEngineError] = RuleStoreError) -> Iterator[sqlite3.Connection]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.row_factory = sqlite3.Row
                yield conn
        except sqlite3.Error as e:
            raise error(f"SQLite error on {self.db_path}: {e}") from e

    def _init_schema(self):
        """Initialize database schema"""
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS pets (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_pets_user ON pets(user_id);

                CREATE TABLE IF NOT EXISTS records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    pet_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    shape TEXT NOT NULL,
                    health_status TEXT NOT NULL,
                    confidence REAL DEFAULT 0,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_records_pet_ts
                ON records(pet_id, timestamp);

                CREATE TABLE IF NOT EXISTS alert_rules (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    pet_id TEXT,
                    name TEXT NOT NULL,
                    description TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    triggers TEXT NOT NULL,
                    notifications TEXT NOT NULL,
                    frequency TEXT NOT NULL,
                    custom_conditions TEXT,
                    total_triggered INTEGER NOT NULL DEFAULT 0,
                    last_triggered TEXT,
                    total_notifications_sent INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_rules_user_active
                ON alert_rules(user_id, is_active);

                CREATE INDEX IF NOT EXISTS idx_rules_pet_active
                ON alert_rules(pet_id, is_active);

                CREATE TABLE IF NOT EXISTS rule_triggers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    rule_id TEXT NOT NULL,
                    triggered_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_rule_triggers_rule_ts
                ON rule_triggers(rule_id, triggered_at);

                CREATE TABLE IF NOT EXISTS notifications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    channel TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    pet_id TEXT,
                    category TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    metadata TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                );
            """)

    # =========================================================================
    # Pets
    # =========================================================================

    def add_pet(self, pet_id: str, user_id: str, name: Optional[str] = None) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO pets (id, user_id, name) VALUES (?, ?, ?)",
                [pet_id, user_id, name]
            )

    def pets_for_user(self, user_id: str) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id FROM pets WHERE user_id = ? ORDER BY id", [user_id]
            ).fetchall()
        return [row["id"] for row in rows]

    # =========================================================================
    # Records (RecordReader)
    # =========================================================================

    def save_records(self, records: List[EventRecord]) -> int:
        """Save event records to database"""
        if not records:
            return 0

        with self._connect(RecordReaderError) as conn:
            conn.executemany(
                """INSERT INTO records
                   (pet_id, timestamp, shape, health_status, confidence)
                   VALUES (?, ?, ?, ?, ?)""",
                [
                    (r.subject_id, _ts(r.timestamp), f"type{r.shape_code}",
                     r.health_status.value, r.confidence)
                    for r in records
                ]
            )
            return len(records)

    def fetch(
        self,
        subject_id: str,
        start: datetime,
        end: Optional[datetime] = None
    ) -> List[EventRecord]:
        """Read a pet's records in [start, end), oldest first"""
        sql = "SELECT * FROM records WHERE pet_id = ? AND timestamp >= ?"
        params: List[Any] = [subject_id, _ts(start)]
        if end is not None:
            sql += " AND timestamp < ?"
            params.append(_ts(end))
        sql += " ORDER BY timestamp ASC, id ASC"

        with self._connect(RecordReaderError) as conn:
            rows = conn.execute(sql, params).fetchall()

        return [
            EventRecord(
                id=str(row["id"]),
                subject_id=row["pet_id"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                shape_code=row["shape"],
                health_status=row["health_status"],
                confidence=row["confidence"] or 0.0,
            )
            for row in rows
        ]

    # =========================================================================
    # Rules (RuleStore)
    # =========================================================================

    def _recent_triggers(self, conn: sqlite3.Connection, rule_id: str, limit: int) -> List[datetime]:
        # The newest max_per_week triggers are enough to evaluate both caps
        rows = conn.execute(
            """SELECT triggered_at FROM rule_triggers
               WHERE rule_id = ?
               ORDER BY triggered_at DESC LIMIT ?""",
            [rule_id, limit]
        ).fetchall()
        return [datetime.fromisoformat(row["triggered_at"]) for row in reversed(rows)]

    def _row_to_rule(self, conn: sqlite3.Connection, row: sqlite3.Row) -> AlertRule:
        frequency = json.loads(row["frequency"])
        return AlertRule.model_validate({
            "id": row["id"],
            "user_id": row["user_id"],
            "pet_id": row["pet_id"],
            "name": row["name"],
            "description": row["description"],
            "is_active": bool(row["is_active"]),
            "triggers": json.loads(row["triggers"]),
            "notifications": json.loads(row["notifications"]),
            "frequency": frequency,
            "custom_conditions": json.loads(row["custom_conditions"]) if row["custom_conditions"] else None,
            "stats": {
                "total_triggered": row["total_triggered"],
                "last_triggered": _parse_ts(row["last_triggered"]),
                "total_notifications_sent": row["total_notifications_sent"],
                "recent_triggers": self._recent_triggers(
                    conn, row["id"], int(frequency.get("max_per_week", 10))
                ),
            },
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        })

    def _select_rules(self, where: str, params: List[Any]) -> List[AlertRule]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM alert_rules WHERE {where} ORDER BY created_at DESC, id", params
            ).fetchall()
            return [self._row_to_rule(conn, row) for row in rows]

    def _rule_values(self, rule: AlertRule) -> Dict[str, Any]:
        data = rule.model_dump(mode="json")
        return {
            "id": rule.id,
            "user_id": rule.user_id,
            "pet_id": rule.pet_id,
            "name": rule.name,
            "description": rule.description,
            "is_active": int(rule.is_active),
            "triggers": json.dumps(data["triggers"]),
            "notifications": json.dumps(data["notifications"]),
            "frequency": json.dumps(data["frequency"]),
            "custom_conditions": json.dumps(data["custom_conditions"]) if rule.custom_conditions else None,
            "total_triggered": rule.stats.total_triggered,
            "last_triggered": _ts(rule.stats.last_triggered),
            "total_notifications_sent": rule.stats.total_notifications_sent,
            "created_at": _ts(rule.created_at),
            "updated_at": _ts(rule.updated_at),
        }

    def create_rule(self, rule: AlertRule) -> AlertRule:
        values = self._rule_values(rule)
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO alert_rules ({columns}) VALUES ({placeholders})",
                list(values.values())
            )
        logger.info("Created rule %s (%s) for user %s", rule.id, rule.name, rule.user_id)
        return self.get_rule(rule.id)

    def get_rule(self, rule_id: str) -> AlertRule:
        rules = self._select_rules("id = ?", [rule_id])
        if not rules:
            raise RuleNotFoundError(rule_id)
        return rules[0]

    def list_rules(
        self,
        user_id: str,
        pet_id: Optional[str] = None,
        include_inactive: bool = False
    ) -> List[AlertRule]:
        where = "user_id = ?"
        params: List[Any] = [user_id]
        if not include_inactive:
            where += " AND is_active = 1"
        if pet_id is not None:
            where += " AND (pet_id = ? OR pet_id IS NULL)"
            params.append(pet_id)
        return self._select_rules(where, params)

    def active_rules_for(self, user_id: str, pet_id: Optional[str] = None) -> List[AlertRule]:
        return self.list_rules(user_id, pet_id, include_inactive=False)

    def update_rule(self, rule_id: str, **changes: Any) -> AlertRule:
        """
        Apply user edits to a rule.

        Counters and identity cannot be edited here; the merged rule is
        validated again before it is written.
        """
        current = self.get_rule(rule_id)
        data = current.model_dump()
        for key in ("id", "user_id", "stats", "created_at", "updated_at"):
            changes.pop(key, None)
        data.update(changes)
        data["updated_at"] = datetime.now()
        updated = AlertRule.model_validate(data)

        values = self._rule_values(updated)
        editable = ["pet_id", "name", "description", "is_active", "triggers",
                    "notifications", "frequency", "custom_conditions", "updated_at"]
        assignments = ", ".join(f"{col} = ?" for col in editable)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE alert_rules SET {assignments} WHERE id = ?",
                [values[col] for col in editable] + [rule_id]
            )
        logger.info("Updated rule %s", rule_id)
        return self.get_rule(rule_id)

    def delete_rule(self, rule_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM alert_rules WHERE id = ?", [rule_id])
            conn.execute("DELETE FROM rule_triggers WHERE rule_id = ?", [rule_id])
        return cursor.rowcount > 0

    def create_default_rules(self, user_id: str) -> int:
        """Create the default rules a user does not have yet (matched by name)"""
        existing = {r.name for r in self.list_rules(user_id, include_inactive=True)}
        created = 0
        for rule in default_rules(user_id):
            if rule.name in existing:
                continue
            self.create_rule(rule)
            created += 1
        logger.info("Created %d default rules for user %s", created, user_id)
        return created

    def active_subjects(self) -> List[Subject]:
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT DISTINCT user_id, pet_id FROM alert_rules
                   WHERE is_active = 1 AND pet_id IS NOT NULL
                   UNION
                   SELECT DISTINCT r.user_id, p.id FROM alert_rules r
                   JOIN pets p ON p.user_id = r.user_id
                   WHERE r.is_active = 1 AND r.pet_id IS NULL
                   ORDER BY 1, 2"""
            ).fetchall()
        return [Subject(user_id=row[0], pet_id=row[1]) for row in rows]

    def record_trigger(
        self,
        rule_id: str,
        expected_last_triggered: Optional[datetime],
        triggered_at: datetime
    ) -> AlertRule:
        """Conditional counter update; see RuleStore.record_trigger"""
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE alert_rules
                   SET total_triggered = total_triggered + 1,
                       last_triggered = ?,
                       updated_at = ?
                   WHERE id = ? AND last_triggered IS ?""",
                [_ts(triggered_at), _ts(datetime.now()), rule_id, _ts(expected_last_triggered)]
            )
            if cursor.rowcount == 0:
                exists = conn.execute("SELECT 1 FROM alert_rules WHERE id = ?", [rule_id]).fetchone()
                if exists is None:
                    raise RuleNotFoundError(rule_id)
                raise StaleRuleStateError(rule_id)
            conn.execute(
                "INSERT INTO rule_triggers (rule_id, triggered_at) VALUES (?, ?)",
                [rule_id, _ts(triggered_at)]
            )
        return self.get_rule(rule_id)

    def add_notifications_sent(self, rule_id: str, count: int) -> AlertRule:
        with self._connect() as conn:
            cursor = conn.execute(
                """UPDATE alert_rules
                   SET total_notifications_sent = total_notifications_sent + ?
                   WHERE id = ?""",
                [count, rule_id]
            )
            if cursor.rowcount == 0:
                raise RuleNotFoundError(rule_id)
        return self.get_rule(rule_id)

    # =========================================================================
    # Notifications (NotificationSink)
    # =========================================================================

    def deliver(self, channel: str, payload: NotificationPayload) -> bool:
        """Queue a payload in the outbox"""
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    """INSERT INTO notifications
                       (channel, user_id, pet_id, category, title, message, priority, metadata)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    [channel, payload.user_id, payload.pet_id, payload.category,
                     payload.title, payload.message, payload.priority,
                     json.dumps(payload.metadata)]
                )
        except sqlite3.Error as e:
            logger.warning("Could not queue %s notification: %s", channel, e)
            return False
        return True

    def get_notifications(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM notifications WHERE user_id = ?
                   ORDER BY id DESC LIMIT ?""",
                [user_id, limit]
            ).fetchall()
        return [
            {**dict(row), "metadata": json.loads(row["metadata"]) if row["metadata"] else {}}
            for row in rows
        ]

    # =========================================================================
    # Management
    # =========================================================================

    def get_stats(self) -> dict:
        """Get storage statistics"""
        with self._connect() as conn:
            counts = {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in ("pets", "records", "alert_rules", "rule_triggers", "notifications")
            }
        return {**counts, "db_path": self.db_path}


# =============================================================================
# Singleton
# =============================================================================

_storage: Optional[SQLiteStorage] = None


def get_storage() -> SQLiteStorage:
    """Get singleton storage instance"""
    global _storage
    if _storage is None:
        from core.config import get_settings
        _storage = SQLiteStorage(get_settings().db_path)
    return _storage
