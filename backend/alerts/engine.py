import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from core.exceptions import StaleRuleStateError
from core.models import Subject
from db.interfaces import NotificationSink, RuleStore
from detection import AnomalyDetector, AnomalyType, DetectionThresholds, Finding

from .matcher import can_fire, matches
from .models import (
    AlertRule,
    DeliveryOutcome,
    SweepError,
    SweepSummary,
    TriggerResult,
)
from .notifications import build_payload

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class AlertEngine:
    """
    Runs detection for a subject, matches findings against its rules and
    dispatches notifications for every rule that may fire.

    Holds no rule state of its own: rules are read from the RuleStore on
    every evaluation and trigger counters are written back through it.
    """

    def __init__(
        self,
        detector: AnomalyDetector,
        rules: RuleStore,
        sink: NotificationSink,
        max_concurrency: int = 8,
        subject_timeout: float = 30.0,
        clock: Clock = datetime.now
    ):
        self._detector = detector
        self._rules = rules
        self._sink = sink
        self._max_concurrency = max_concurrency
        self._subject_timeout = subject_timeout
        self._clock = clock
        self._stats = {
            "evaluations": 0,
            "triggers": 0,
            "suppressed": 0,
            "conflicts": 0,
            "delivery_failures": 0,
            "sweeps": 0,
            "start_time": datetime.now()
        }

    @property
    def detector(self) -> AnomalyDetector:
        return self._detector

    # =========================================================================
    # Single subject
    # =========================================================================

    async def evaluate_subject(
        self,
        subject: Subject,
        now: Optional[datetime] = None,
        fires: Optional[List[asyncio.Future]] = None
    ) -> List[TriggerResult]:
        """
        Evaluate one subject and fire every eligible (finding, rule) pair.

        Pairs are visited in detector order, then rule order. A rule that
        fires is replaced by its updated snapshot, so its own cooldown
        stops it from firing twice in the same evaluation.

        Each fire (claim, dispatch, count) runs shielded from cancellation
        and is appended to `fires` when given, so a caller that times out
        can still await the triggers already under way.

        Raises:
            RecordReaderError / RuleStoreError: infrastructure failures,
            including failed counter writes
        """
        now = now or self._clock()
        self._stats["evaluations"] += 1

        rules = await asyncio.to_thread(self._rules.active_rules_for, subject.user_id, subject.pet_id)
        rules = [r for r in rules if r.is_active and r.applies_to(subject.pet_id)]
        if not rules:
            logger.info("No active rules for %s", subject)
            return []

        windows = await asyncio.to_thread(self._detector.read_windows, subject.pet_id, now)

        by_thresholds: Dict[DetectionThresholds, List[Finding]] = {}
        findings_for: Dict[str, List[Finding]] = {}
        for rule in rules:
            thresholds = rule.thresholds(self._detector.thresholds)
            if thresholds not in by_thresholds:
                by_thresholds[thresholds] = self._detector.detect_in_windows(windows, thresholds)
            findings_for[rule.id] = by_thresholds[thresholds]

        current = {rule.id: rule for rule in rules}
        results: List[TriggerResult] = []

        for anomaly_type in AnomalyType:
            for rule_id, findings in findings_for.items():
                finding = next((f for f in findings if f.type == anomaly_type), None)
                if finding is None:
                    continue

                rule = current[rule_id]
                if not matches(rule, finding):
                    continue
                if not can_fire(rule, now):
                    self._stats["suppressed"] += 1
                    continue

                # Once claimed, a trigger has to reach dispatch
                task = asyncio.ensure_future(self._fire(rule, finding, subject, now))
                if fires is not None:
                    fires.append(task)
                fired = await asyncio.shield(task)
                if fired is None:
                    continue
                result, updated = fired
                current[rule_id] = updated
                results.append(result)

        logger.info("Checked %s: %d alerts triggered", subject, len(results))
        return results

    async def check_subject(self, user_id: str, pet_id: str) -> List[TriggerResult]:
        return await self.evaluate_subject(Subject(user_id=user_id, pet_id=pet_id))

    async def _fire(self, rule: AlertRule, finding: Finding, subject: Subject, now: datetime):
        # Claim first; the conditional write is what stops a concurrent
        # evaluation of the same rule from passing can_fire as well.
        try:
            claimed = await asyncio.to_thread(
                self._rules.record_trigger, rule.id, rule.stats.last_triggered, now
            )
        except StaleRuleStateError:
            self._stats["conflicts"] += 1
            logger.warning("Rule %s already fired concurrently, skipping", rule.id)
            return None

        logger.info("Rule %s (%s) fired on %s for %s", rule.id, rule.name, finding.type.value, subject)
        delivered = await self._dispatch(rule, finding, subject)

        updated = claimed
        sent = delivered.delivered_count()
        if sent:
            updated = await asyncio.to_thread(self._rules.add_notifications_sent, rule.id, sent)

        self._stats["triggers"] += 1
        result = TriggerResult(
            rule_id=rule.id,
            rule_name=rule.name,
            subject=subject,
            finding=finding,
            delivered=delivered,
            triggered_at=now,
        )
        return result, updated

    async def _dispatch(self, rule: AlertRule, finding: Finding, subject: Subject) -> DeliveryOutcome:
        outcome = DeliveryOutcome()
        for channel in rule.notifications.enabled():
            payload = build_payload(channel, rule, finding, subject)
            try:
                ok = await asyncio.to_thread(self._sink.deliver, channel, payload)
            except Exception as exc:
                logger.warning("Delivery via %s failed for rule %s: %s", channel, rule.id, exc)
                ok = False
            if not ok:
                self._stats["delivery_failures"] += 1
            setattr(outcome, channel, bool(ok))
        return outcome

    # =========================================================================
    # Batch sweep
    # =========================================================================

    async def run_batch_sweep(self, stop: Optional[asyncio.Event] = None) -> SweepSummary:
        """
        Evaluate every subject with at least one active rule.

        Subjects run through a bounded pool, each under its own timeout.
        A failing or timed-out subject is recorded in `errors` and the
        sweep carries on. Once `stop` is set no new subject is started;
        running ones finish or time out.
        """
        summary = SweepSummary()
        self._stats["sweeps"] += 1

        subjects = await asyncio.to_thread(self._rules.active_subjects)
        logger.info("Sweep started: %d subjects", len(subjects))

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run_one(subject: Subject) -> None:
            async with semaphore:
                if stop is not None and stop.is_set():
                    summary.skipped += 1
                    return

                summary.checked += 1
                fires: List[asyncio.Future] = []
                try:
                    results = await asyncio.wait_for(
                        self.evaluate_subject(subject, fires=fires), timeout=self._subject_timeout
                    )
                except asyncio.TimeoutError:
                    logger.warning("Evaluation of %s timed out after %ss", subject, self._subject_timeout)
                    summary.errors.append(
                        SweepError(subject, f"timed out after {self._subject_timeout}s")
                    )
                    await self._collect_fires(subject, fires, summary)
                    return
                except Exception as exc:
                    logger.exception("Evaluation of %s failed", subject)
                    summary.errors.append(SweepError(subject, str(exc) or type(exc).__name__))
                    return

                summary.triggered += len(results)
                summary.results.extend(results)

        await asyncio.gather(*(run_one(s) for s in subjects))

        summary.errors.sort(key=lambda e: e.subject)
        summary.finished_at = datetime.now()
        logger.info(
            "Sweep finished: %d checked, %d triggered, %d errors, %d skipped",
            summary.checked, summary.triggered, len(summary.errors), summary.skipped
        )
        return summary

    async def _collect_fires(self, subject: Subject, fires: List[asyncio.Future], summary: SweepSummary) -> None:
        """Wait for triggers a timed-out evaluation left running and report them"""
        if not fires:
            return
        outcomes = await asyncio.gather(*fires, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                logger.error("Trigger for %s failed after timeout: %s", subject, outcome)
            elif outcome is not None:
                summary.triggered += 1
                summary.results.append(outcome[0])

    def stats(self) -> Dict[str, Any]:
        uptime = (datetime.now() - self._stats["start_time"]).total_seconds()
        return {
            **{k: v for k, v in self._stats.items() if k != "start_time"},
            "uptime_seconds": round(uptime, 2),
            "max_concurrency": self._max_concurrency,
            "subject_timeout": self._subject_timeout,
        }


_alert_engine: Optional[AlertEngine] = None


def build_alert_engine(settings=None, storage=None) -> AlertEngine:
    """Wire an engine from settings, using one store for all three interfaces"""
    from core.config import get_settings
    from db import get_storage

    settings = settings or get_settings()
    storage = storage or get_storage()
    detector = AnomalyDetector(
        storage,
        analysis_window_days=settings.analysis_window_days,
        baseline_window_days=settings.baseline_window_days,
        thresholds=DetectionThresholds.from_config(settings.thresholds),
    )
    return AlertEngine(
        detector,
        storage,
        storage,
        max_concurrency=settings.max_concurrency,
        subject_timeout=settings.subject_timeout_seconds,
    )


def get_alert_engine() -> AlertEngine:
    global _alert_engine
    if _alert_engine is None:
        _alert_engine = build_alert_engine()
    return _alert_engine
