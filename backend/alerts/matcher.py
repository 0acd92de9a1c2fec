"""
Rule Matcher
Pure predicates over an immutable rule snapshot.

    matches(rule, finding)  → does the finding satisfy the rule's triggers?
    can_fire(rule, now)     → is the rule allowed to fire right now?

Neither function reads a clock or touches storage; `now` is always
passed in, so the result depends only on the arguments.
"""

from datetime import datetime, timedelta
from typing import List

from detection.models import Finding

from .models import AlertRule, RuleStats


WEEK = timedelta(days=7)


def matches(rule: AlertRule, finding: Finding) -> bool:
    """
    All three trigger conditions must hold: type, severity and
    minimum confidence.
    """
    triggers = rule.triggers
    if finding.type not in triggers.anomaly_types:
        return False
    if finding.severity not in triggers.severity_levels:
        return False
    if finding.confidence < triggers.minimum_confidence:
        return False
    return True


def start_of_day(now: datetime) -> datetime:
    """Midnight of `now`'s own day, in `now`'s own timezone"""
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def trigger_history(stats: RuleStats) -> List[datetime]:
    """
    Trigger times to count against the caps.

    Older stores may only know last_triggered; it then counts as one.
    """
    if stats.recent_triggers:
        return list(stats.recent_triggers)
    if stats.last_triggered is not None:
        return [stats.last_triggered]
    return []


def triggers_today(stats: RuleStats, now: datetime) -> int:
    midnight = start_of_day(now)
    return sum(1 for t in trigger_history(stats) if midnight <= t <= now)


def triggers_this_week(stats: RuleStats, now: datetime) -> int:
    """Triggers within the rolling 7 days ending at `now`"""
    week_start = now - WEEK
    return sum(1 for t in trigger_history(stats) if week_start < t <= now)


def cooldown_remaining(rule: AlertRule, now: datetime) -> timedelta:
    last = rule.stats.last_triggered
    if last is None:
        return timedelta(0)
    remaining = last + timedelta(hours=rule.frequency.cooldown_hours) - now
    return max(remaining, timedelta(0))


def can_fire(rule: AlertRule, now: datetime) -> bool:
    """
    Check whether a rule may fire at `now`.

    Order of checks:
        1. inactive rules never fire
        2. cooldown since last_triggered must have elapsed
        3. triggers since local midnight < max_per_day
        4. triggers in the rolling 7 days < max_per_week
    """
    if not rule.is_active:
        return False

    if cooldown_remaining(rule, now) > timedelta(0):
        return False

    if triggers_today(rule.stats, now) >= rule.frequency.max_per_day:
        return False

    if triggers_this_week(rule.stats, now) >= rule.frequency.max_per_week:
        return False

    return True
