"""
Tests - AlertEngine.evaluate_subject

Detection, matching, dispatch and counter writes against in-memory fakes.
"""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from alerts import AlertEngine, CustomConditions, FrequencyOverride, HealthDeclineOverride
from core.exceptions import RuleStoreError, StaleRuleStateError
from core.models import Subject
from detection import DEFAULT_THRESHOLDS, AnomalyDetector, AnomalyType

from conftest import (
    NOW,
    FakeRecordReader,
    FakeRuleStore,
    FakeSink,
    decline_records,
    make_records,
    baseline_records,
    make_rule,
)


SUBJECT = Subject("user-1", "pet-1")


def build_engine(rules, reader=None, sink=None, **kwargs):
    reader = reader or FakeRecordReader(decline_records("pet-1"))
    store = rules if isinstance(rules, FakeRuleStore) else FakeRuleStore(rules)
    sink = sink or FakeSink()
    engine = AlertEngine(AnomalyDetector(reader), store, sink, clock=lambda: NOW, **kwargs)
    return engine, store, sink


class TestEvaluateSubject:
    @pytest.mark.asyncio
    async def test_fires_and_updates_counters(self):
        rule = make_rule(channels={"in_app": True, "email": True})
        engine, store, sink = build_engine([rule])

        results = await engine.evaluate_subject(SUBJECT)

        assert len(results) == 1
        result = results[0]
        assert result.rule_id == rule.id
        assert result.finding.type == AnomalyType.HEALTH_DECLINE
        assert result.delivered.to_dict() == {"in_app": True, "email": True, "push": False}
        assert result.triggered_at == NOW

        assert [c for c, _ in sink.delivered] == ["in_app", "email"]
        stats = store.rules[rule.id].stats
        assert stats.total_triggered == 1
        assert stats.last_triggered == NOW
        assert stats.total_notifications_sent == 2

    @pytest.mark.asyncio
    async def test_unmatched_rule_is_untouched(self):
        rule = make_rule(types=["frequency"])
        engine, store, sink = build_engine([rule])

        assert await engine.evaluate_subject(SUBJECT) == []
        assert sink.delivered == []
        assert store.rules[rule.id].stats.total_triggered == 0

    @pytest.mark.asyncio
    async def test_no_records_no_triggers(self):
        engine, store, sink = build_engine([make_rule()], reader=FakeRecordReader())

        assert await engine.evaluate_subject(SUBJECT) == []

    @pytest.mark.asyncio
    async def test_rules_for_other_pets_ignored(self):
        engine, _, _ = build_engine([make_rule(pet_id="pet-2")])

        assert await engine.evaluate_subject(SUBJECT) == []

    @pytest.mark.asyncio
    async def test_user_wide_rule_applies(self):
        engine, _, _ = build_engine([make_rule(pet_id=None)])

        results = await engine.evaluate_subject(SUBJECT)

        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_cooldown_blocks_second_evaluation(self):
        engine, store, sink = build_engine([make_rule()])

        first = await engine.evaluate_subject(SUBJECT)
        second = await engine.evaluate_subject(SUBJECT)

        assert len(first) == 1
        assert second == []
        assert len(sink.delivered) == 1
        assert engine.stats()["suppressed"] == 1

    @pytest.mark.asyncio
    async def test_rule_fires_once_per_evaluation(self):
        # Matches two finding types; the first trigger starts its cooldown
        reader = FakeRecordReader(
            baseline_records("pet-1")
            + make_records("pet-1", [1, 7, 1, 7, 1, 7], ["concerning"] * 6)
        )
        rule = make_rule(types=["health_decline", "consistency_change"])
        engine, store, _ = build_engine([rule], reader=reader)

        results = await engine.evaluate_subject(SUBJECT)

        assert [r.finding.type for r in results] == [AnomalyType.HEALTH_DECLINE]
        assert store.rules[rule.id].stats.total_triggered == 1

    @pytest.mark.asyncio
    async def test_pairs_follow_detector_order(self):
        reader = FakeRecordReader(
            baseline_records("pet-1")
            + make_records("pet-1", [1, 7, 1, 7, 1, 7], ["concerning"] * 6)
        )
        consistency_rule = make_rule(types=["consistency_change"], name="Consistency")
        decline_rule = make_rule(types=["health_decline"], name="Decline")
        engine, _, _ = build_engine([consistency_rule, decline_rule], reader=reader)

        results = await engine.evaluate_subject(SUBJECT)

        assert [r.rule_name for r in results] == ["Decline", "Consistency"]


class TestDispatch:
    @pytest.mark.asyncio
    async def test_failed_channel_does_not_stop_others(self):
        rule = make_rule(channels={"in_app": True, "email": True, "push": True})
        engine, store, sink = build_engine([rule], sink=FakeSink(failing_channels=["email"]))

        results = await engine.evaluate_subject(SUBJECT)

        assert results[0].delivered.to_dict() == {"in_app": True, "email": False, "push": True}
        assert [c for c, _ in sink.delivered] == ["in_app", "push"]
        assert store.rules[rule.id].stats.total_notifications_sent == 2
        assert engine.stats()["delivery_failures"] == 1

    @pytest.mark.asyncio
    async def test_trigger_counts_even_when_every_channel_fails(self):
        rule = make_rule(channels={"in_app": True, "email": True})
        sink = FakeSink(failing_channels=["in_app", "email"])
        engine, store, _ = build_engine([rule], sink=sink)

        results = await engine.evaluate_subject(SUBJECT)

        assert len(results) == 1
        assert results[0].delivered.delivered_count() == 0
        stats = store.rules[rule.id].stats
        assert stats.total_triggered == 1
        assert stats.total_notifications_sent == 0
        assert store.notification_updates == []

    @pytest.mark.asyncio
    async def test_sink_returning_false(self):
        sink = MagicMock()
        sink.deliver.return_value = False
        engine, store, _ = build_engine([make_rule()], sink=sink)

        results = await engine.evaluate_subject(SUBJECT)

        assert results[0].delivered.in_app is False
        sink.deliver.assert_called_once()


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_stale_claim_is_skipped(self):
        rule = make_rule()
        store = FakeRuleStore([rule])
        store.record_trigger = MagicMock(side_effect=StaleRuleStateError(rule.id))
        engine, _, sink = build_engine(store)

        results = await engine.evaluate_subject(SUBJECT)

        assert results == []
        assert sink.delivered == []
        assert engine.stats()["conflicts"] == 1

    @pytest.mark.asyncio
    async def test_overlapping_evaluations_fire_once(self):
        rule = make_rule()
        engine, store, sink = build_engine([rule])

        outcomes = await asyncio.gather(
            engine.evaluate_subject(SUBJECT),
            engine.evaluate_subject(SUBJECT),
        )

        assert sum(len(o) for o in outcomes) == 1
        assert store.rules[rule.id].stats.total_triggered == 1
        assert len(sink.delivered) == 1

    @pytest.mark.asyncio
    async def test_counter_write_failure_is_an_error(self):
        rule = make_rule()
        store = FakeRuleStore([rule])
        store.record_trigger = MagicMock(side_effect=RuleStoreError("disk full"))
        engine, _, _ = build_engine(store)

        with pytest.raises(RuleStoreError):
            await engine.evaluate_subject(SUBJECT)


class TestThresholdOverrides:
    @pytest.mark.asyncio
    async def test_rule_uses_its_own_thresholds(self):
        # Half the records concerning, no streak: anomalous only at default thresholds
        reader = FakeRecordReader(
            baseline_records("pet-1")
            + make_records("pet-1", [4] * 8, ["concerning", "healthy"] * 4)
        )
        default_rule = make_rule(name="Default", minimum_confidence=40)
        strict_rule = make_rule(
            name="Strict",
            minimum_confidence=40,
            custom_conditions=CustomConditions(
                health_decline_threshold=HealthDeclineOverride(
                    concerning_ratio=0.9, consecutive_concerning=5
                )
            ),
        )
        engine, _, _ = build_engine([default_rule, strict_rule], reader=reader)

        results = await engine.evaluate_subject(SUBJECT)

        assert [r.rule_name for r in results] == ["Default"]
        # Windows are read once per subject, whatever the number of bundles
        assert len(reader.calls) == 2

    def test_crossing_frequency_override_keeps_base_pair(self):
        rule = make_rule(
            custom_conditions=CustomConditions(
                frequency_threshold=FrequencyOverride(min_per_week=30),
                health_decline_threshold=HealthDeclineOverride(concerning_ratio=0.9),
            ),
        )

        thresholds = rule.thresholds(DEFAULT_THRESHOLDS)

        assert (thresholds.min_per_week, thresholds.max_per_week) == (3, 21)
        assert thresholds.concerning_ratio == 0.9

    @pytest.mark.asyncio
    async def test_rate_above_max_is_not_reported_as_too_low(self):
        # 4 records a day over the analysis window: 28/week, above the base max of 21
        records = make_records("pet-1", [4] * 56, step=timedelta(hours=6))
        rule = make_rule(
            types=("frequency",),
            minimum_confidence=0,
            custom_conditions=CustomConditions(
                frequency_threshold=FrequencyOverride(min_per_week=30)
            ),
        )
        engine, _, _ = build_engine([rule], reader=FakeRecordReader(records))

        results = await engine.evaluate_subject(SUBJECT)

        assert [r.finding.type for r in results] == [AnomalyType.FREQUENCY]
        assert "too low" not in results[0].finding.description.lower()

    @pytest.mark.asyncio
    async def test_check_subject(self):
        engine, _, _ = build_engine([make_rule()])

        results = await engine.check_subject("user-1", "pet-1")

        assert results[0].subject == SUBJECT
