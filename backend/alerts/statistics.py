"""
Alert Statistics
Per-user rollup of rule counters.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List

from .models import AlertRule


RECENT_LIMIT = 10


def alert_statistics(rules: List[AlertRule], now: datetime, days: int = 30) -> Dict[str, Any]:
    """
    Summarize a user's rules.

    Args:
        rules: All of the user's rules, active or not
        now: Reference time
        days: Look-back for the recent trigger list

    Returns:
        Dict with totals, up to 10 recent triggers (newest first)
        and per-rule performance
    """
    since = now - timedelta(days=days)

    recent = sorted(
        (r for r in rules if r.stats.last_triggered and r.stats.last_triggered >= since),
        key=lambda r: r.stats.last_triggered,
        reverse=True,
    )[:RECENT_LIMIT]

    return {
        "total_rules": len(rules),
        "active_rules": sum(1 for r in rules if r.is_active),
        "total_triggered": sum(r.stats.total_triggered for r in rules),
        "total_notifications_sent": sum(r.stats.total_notifications_sent for r in rules),
        "recent_triggers": [
            {
                "rule_id": r.id,
                "rule_name": r.name,
                "triggered_at": r.stats.last_triggered.isoformat(),
                "anomaly_type": r.triggers.anomaly_types[0].value,
                "severity": r.triggers.severity_levels[0].value,
            }
            for r in recent
        ],
        "rule_performance": [
            {
                "rule_id": r.id,
                "rule_name": r.name,
                "total_triggered": r.stats.total_triggered,
                "last_triggered": r.stats.last_triggered.isoformat() if r.stats.last_triggered else None,
                "is_active": r.is_active,
            }
            for r in rules
        ],
    }
