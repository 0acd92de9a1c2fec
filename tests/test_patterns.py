"""
Tests - Pattern helpers, health pattern profile and summary
"""

from datetime import datetime

import pandas as pd
import pytest

from core.models import EventRecord, records_frame
from detection import Finding, Severity, AnomalyType
from detection.patterns import (
    health_pattern,
    longest_run,
    pattern_similarity,
    shape_distribution,
    shape_jumps,
    summarize,
)

from conftest import make_records


class TestPatternSimilarity:
    def test_weighted_overlap(self):
        current = pd.Series({1: 2, 2: 2})
        baseline = pd.Series({1: 4})

        # code 1: weight 1.0, score 0.5; code 2: weight 0.5, score 0.25
        assert pattern_similarity(current, baseline) == pytest.approx(0.5)

    def test_identical_distributions(self):
        counts = pd.Series({3: 1, 4: 3})
        assert pattern_similarity(counts, counts * 2) == pytest.approx(1.0)

    def test_no_weight_is_zero(self):
        assert pattern_similarity(pd.Series(dtype=float), pd.Series(dtype=float)) == 0.0


def test_shape_distribution_sorted_by_code():
    frame = records_frame(make_records("pet-1", [5, 1, 5, 3]))
    dist = shape_distribution(frame)

    assert list(dist.index) == [1, 3, 5]
    assert list(dist.values) == [1, 1, 2]


def test_longest_run():
    assert longest_run([]) == 0
    assert longest_run([True, True, False, True, True, True, False]) == 3
    assert longest_run([False, False]) == 0


def test_shape_jumps():
    assert shape_jumps([1, 1, 6, 6, 2]) == 2
    assert shape_jumps([4]) == 0
    assert shape_jumps([1, 3, 5, 7]) == 0


class TestHealthPattern:
    def _record(self, hour, status, shape=4):
        return EventRecord(
            subject_id="pet-1",
            timestamp=datetime(2026, 10, 10, hour, 30),
            shape_code=shape,
            health_status=status,
        )

    def test_profile(self):
        records = [
            self._record(7, "healthy", 4),
            self._record(13, "warning", 4),
            self._record(20, "concerning", 5),
            self._record(3, "warning", 2),
            self._record(11, "healthy", 4),
        ]
        pattern = health_pattern(records_frame(records), days=7)

        assert pattern.average_frequency == pytest.approx(5.0)
        assert pattern.health_status_distribution == {"healthy": 2, "warning": 2, "concerning": 1}
        # Tie between healthy and warning goes to the first in status order
        assert pattern.dominant_health_status == "healthy"
        assert pattern.shape_distribution == {2: 1, 4: 3, 5: 1}
        assert (pattern.morning_count, pattern.afternoon_count, pattern.evening_count) == (2, 1, 2)

    def test_to_dict(self):
        pattern = health_pattern(records_frame([self._record(12, "concerning")]), days=30)
        data = pattern.to_dict()

        assert data["dominant_health_status"] == "concerning"
        assert data["shape_distribution"] == {"4": 1}
        assert data["time_patterns"] == {"morning": 0, "afternoon": 1, "evening": 0}


class TestSummarize:
    def _finding(self, severity, recs):
        return Finding(
            type=AnomalyType.FREQUENCY,
            is_anomalous=True,
            severity=severity,
            confidence=80,
            description="test",
            recommendations=recs,
        )

    def test_empty(self):
        summary = summarize([])

        assert not summary.has_anomalies
        assert summary.overall_risk == Severity.LOW
        assert summary.most_recent is None

    def test_rollup(self):
        findings = [
            self._finding(Severity.MEDIUM, ["a", "b"]),
            self._finding(Severity.HIGH, ["b", "c"]),
            self._finding(Severity.LOW, ["a"]),
        ]
        summary = summarize(findings)

        assert summary.total == 3
        assert (summary.high_count, summary.medium_count, summary.low_count) == (1, 1, 1)
        assert summary.overall_risk == Severity.HIGH
        assert summary.recommendations == ["a", "b", "c"]
        assert summary.most_recent is findings[0]

    def test_medium_risk(self):
        summary = summarize([self._finding(Severity.MEDIUM, []), self._finding(Severity.LOW, [])])
        assert summary.overall_risk == Severity.MEDIUM
