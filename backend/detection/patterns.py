"""
Pattern Helpers
Distribution, similarity and run-length helpers shared by the detectors,
plus the descriptive health-pattern profile and finding summary.

All functions are PURE.
"""

from typing import Dict, List, Sequence

import numpy as np
import pandas as pd

from core.models import HealthStatus

from .models import DetectionSummary, Finding, HealthPattern, Severity


def shape_distribution(frame: pd.DataFrame) -> pd.Series:
    """Count of records per shape code, indexed by code"""
    if frame.empty:
        return pd.Series(dtype=float)
    return frame["shape_code"].astype(int).value_counts().sort_index()


def pattern_similarity(current: pd.Series, baseline: pd.Series) -> float:
    """
    Weighted overlap of two shape distributions.

    For every code present in either window:
        weight = max(ratio_a, ratio_b)
        score += (1 - |ratio_a - ratio_b|) * weight
    similarity = score / sum(weight), 0 when there is no weight.

    Args:
        current: Shape counts for the analysis window
        baseline: Shape counts for the baseline window

    Returns:
        Similarity in [0, 1]
    """
    frame = pd.DataFrame({"current": current, "baseline": baseline}).fillna(0.0)
    if frame.empty:
        return 0.0

    a = frame["current"].to_numpy(dtype=float)
    b = frame["baseline"].to_numpy(dtype=float)
    ratio_a = a / a.sum() if a.sum() > 0 else np.zeros_like(a)
    ratio_b = b / b.sum() if b.sum() > 0 else np.zeros_like(b)

    weight = np.maximum(ratio_a, ratio_b)
    total_weight = float(weight.sum())
    if total_weight <= 0:
        return 0.0

    score = float(((1 - np.abs(ratio_a - ratio_b)) * weight).sum())
    return score / total_weight


def longest_run(flags: Sequence[bool]) -> int:
    """Length of the longest stretch of consecutive True values"""
    longest = 0
    current = 0
    for flag in flags:
        if flag:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def shape_jumps(shape_codes: Sequence[int], min_jump: int = 2) -> int:
    """Number of consecutive pairs whose shape codes differ by more than min_jump"""
    codes = np.asarray(shape_codes, dtype=int)
    if len(codes) < 2:
        return 0
    return int(np.sum(np.abs(np.diff(codes)) > min_jump))


# =============================================================================
# HEALTH PATTERN PROFILE
# =============================================================================

def health_pattern(frame: pd.DataFrame, days: int) -> HealthPattern:
    """
    Describe a subject's records over the last `days` days.

    Caller guarantees the frame is non-empty.

    Args:
        frame: Records frame (see core.models.records_frame)
        days: Window length the frame covers

    Returns:
        HealthPattern with weekly frequency, status/shape distribution
        and time-of-day buckets
    """
    statuses = frame["health_status"].value_counts()
    distribution = {s.value: int(statuses.get(s.value, 0)) for s in HealthStatus}

    # First maximum wins, in healthy -> warning -> concerning order
    dominant = max(distribution, key=lambda k: distribution[k])

    hours = pd.to_datetime(frame["timestamp"]).dt.hour
    morning = int(((hours >= 6) & (hours < 12)).sum())
    afternoon = int(((hours >= 12) & (hours < 18)).sum())
    evening = int(len(hours) - morning - afternoon)

    shapes = shape_distribution(frame)

    return HealthPattern(
        days=days,
        average_frequency=len(frame) * 7 / days,
        dominant_health_status=dominant,
        health_status_distribution=distribution,
        shape_distribution={int(k): int(v) for k, v in shapes.items()},
        morning_count=morning,
        afternoon_count=afternoon,
        evening_count=evening,
    )


# =============================================================================
# SUMMARY
# =============================================================================

def summarize(findings: List[Finding]) -> DetectionSummary:
    """
    Roll a detector run up into counts, an overall risk and a
    de-duplicated recommendation list (first-seen order).
    """
    high = sum(1 for f in findings if f.severity == Severity.HIGH)
    medium = sum(1 for f in findings if f.severity == Severity.MEDIUM)
    low = sum(1 for f in findings if f.severity == Severity.LOW)

    if high:
        risk = Severity.HIGH
    elif medium:
        risk = Severity.MEDIUM
    else:
        risk = Severity.LOW

    recommendations: Dict[str, None] = {}
    for finding in findings:
        for rec in finding.recommendations:
            recommendations.setdefault(rec, None)

    return DetectionSummary(
        has_anomalies=len(findings) > 0,
        total=len(findings),
        high_count=high,
        medium_count=medium,
        low_count=low,
        overall_risk=risk,
        recommendations=list(recommendations),
        most_recent=findings[0] if findings else None,
    )
