"""
Sub-detectors
The four anomaly checks, each computed over an analysis window and a
baseline window.

Run order (and output order): frequency, health_decline, pattern_change,
consistency_change.

Every function here is PURE: the same frames and thresholds always give
the same Finding. Each returns a Finding even when nothing is wrong;
callers keep only the anomalous ones.
"""

import pandas as pd

from core.models import HealthStatus

from .models import AnomalyType, DetectionThresholds, Finding, Severity, TriggerData
from .patterns import longest_run, pattern_similarity, shape_distribution, shape_jumps


MAX_CONFIDENCE = 95.0
DEFAULT_BASELINE_RATE = 7.0       # records per week when no baseline exists

EXPECTED_SIMILARITY = 0.7
SHAPE_JUMP = 2                    # |code delta| above this counts as a change
INCONSISTENCY_LIMIT = 0.6
INCONSISTENCY_HIGH = 0.8
EXPECTED_INCONSISTENCY = 0.3
MIN_CONSISTENCY_RECORDS = 3

SEE_VET_NOW = "Consult a veterinarian as soon as possible"


def _confidence(value: float) -> float:
    return float(min(MAX_CONFIDENCE, max(0.0, value)))


# =============================================================================
# 1. FREQUENCY
# =============================================================================

def frequency(
    analysis: pd.DataFrame,
    baseline: pd.DataFrame,
    analysis_days: int,
    baseline_days: int,
    thresholds: DetectionThresholds
) -> Finding:
    """
    Compare the weekly record rate against the allowed range.

    current_rate = count(analysis) / analysis_days * 7
    baseline_rate = count(baseline) / baseline_days * 7   (7 if empty)

    Args:
        analysis: Analysis window records
        baseline: Baseline window records
        analysis_days: Analysis window length
        baseline_days: Baseline window length
        thresholds: min_per_week / max_per_week are used

    Returns:
        Finding of type frequency
    """
    current_rate = len(analysis) * 7 / analysis_days
    baseline_rate = len(baseline) * 7 / baseline_days if len(baseline) > 0 else DEFAULT_BASELINE_RATE

    is_anomalous = False
    severity = Severity.LOW
    description = "Record frequency is within the normal range"
    recommendations = []
    threshold = 0.0

    if current_rate < thresholds.min_per_week:
        is_anomalous = True
        threshold = float(thresholds.min_per_week)
        severity = Severity.HIGH if current_rate < thresholds.min_per_week * 0.5 else Severity.MEDIUM
        description = (
            f"Frequency too low: {current_rate:.1f} per week, "
            f"below the normal minimum of {thresholds.min_per_week:g}"
        )
        recommendations.append("Increase fibre intake and make sure fresh water is available")
        recommendations.append("Add more exercise to support bowel movement")
        if severity == Severity.HIGH:
            recommendations.append(SEE_VET_NOW)
    elif current_rate > thresholds.max_per_week:
        is_anomalous = True
        threshold = float(thresholds.max_per_week)
        severity = Severity.HIGH if current_rate > thresholds.max_per_week * 1.5 else Severity.MEDIUM
        description = (
            f"Frequency too high: {current_rate:.1f} per week, "
            f"above the normal maximum of {thresholds.max_per_week:g}"
        )
        recommendations.append("Check for intestinal infection or food intolerance")
        recommendations.append("Switch to easily digestible food for a few days")
        if severity == Severity.HIGH:
            recommendations.append(SEE_VET_NOW)

    confidence = _confidence(abs(current_rate - baseline_rate) / baseline_rate * 100)

    return Finding(
        type=AnomalyType.FREQUENCY,
        is_anomalous=is_anomalous,
        severity=severity,
        confidence=confidence,
        description=description,
        recommendations=recommendations,
        trigger_data=TriggerData(
            current_value=float(current_rate),
            expected_value=float(baseline_rate),
            threshold=threshold,
            timeframe=f"{analysis_days} days",
        ),
    )


# =============================================================================
# 2. HEALTH DECLINE
# =============================================================================

def health_decline(analysis: pd.DataFrame, thresholds: DetectionThresholds) -> Finding:
    """
    Share of concerning records and the longest concerning streak.

    Anomalous when the share exceeds concerning_ratio or the streak
    reaches consecutive_concerning.
    """
    concerning = analysis["health_status"] == HealthStatus.CONCERNING.value
    ratio = float(concerning.sum()) / len(analysis) if len(analysis) else 0.0
    streak = longest_run(concerning.tolist())

    is_anomalous = ratio > thresholds.concerning_ratio or streak >= thresholds.consecutive_concerning

    severity = Severity.LOW
    description = "Health status is stable"
    recommendations = []

    if is_anomalous:
        if ratio > 0.7 or streak >= 5:
            severity = Severity.HIGH
            description = f"Severe health decline: {ratio * 100:.1f}% of records are concerning"
            recommendations.append("See a veterinarian immediately, urgent care may be needed")
            recommendations.append("Pause the current diet and switch to prescription food")
        elif ratio > 0.5 or streak >= thresholds.consecutive_concerning:
            severity = Severity.MEDIUM
            description = (
                f"Health decline: {streak} concerning records in a row, "
                f"{ratio * 100:.1f}% concerning overall"
            )
            recommendations.append("Consult a veterinarian")
            recommendations.append("Adjust the diet and consider adding probiotics")
        else:
            description = "Mild health decline: keep a close eye on it"
            recommendations.append("Watch the pet's condition closely")
            recommendations.append("Note down any related symptoms")

    return Finding(
        type=AnomalyType.HEALTH_DECLINE,
        is_anomalous=is_anomalous,
        severity=severity,
        confidence=_confidence(ratio * 100),
        description=description,
        recommendations=recommendations,
        trigger_data=TriggerData(
            current_value=ratio,
            expected_value=float(thresholds.concerning_ratio),
            threshold=float(thresholds.concerning_ratio),
            timeframe="analysis window",
        ),
    )


# =============================================================================
# 3. PATTERN CHANGE
# =============================================================================

def pattern_change(
    analysis: pd.DataFrame,
    baseline: pd.DataFrame,
    thresholds: DetectionThresholds
) -> Finding:
    """
    Compare the shape mix of the analysis window against the baseline.

    Without a baseline this returns a non-anomalous finding with
    confidence 0.
    """
    if baseline.empty:
        return Finding(
            type=AnomalyType.PATTERN_CHANGE,
            is_anomalous=False,
            severity=Severity.LOW,
            confidence=0.0,
            description="Insufficient baseline data to detect pattern changes",
            recommendations=[],
            trigger_data=TriggerData(0.0, 0.0, 0.0, "baseline window"),
        )

    current = shape_distribution(analysis)
    reference = shape_distribution(baseline)

    variation = len(current)
    similarity = pattern_similarity(current, reference)
    similarity_floor = 1 - thresholds.consistency_change_ratio

    is_anomalous = variation > thresholds.shape_variation_limit or similarity < similarity_floor

    severity = Severity.LOW
    description = "Pattern is stable"
    recommendations = []

    if is_anomalous:
        if variation > 5 or similarity < 0.3:
            severity = Severity.HIGH
            description = (
                f"Severe pattern change: {variation} different shapes or a large "
                f"departure from the usual pattern"
            )
            recommendations.append("See a veterinarian to rule out illness")
            recommendations.append("Check whether food or environment has changed")
        else:
            severity = Severity.MEDIUM
            description = "Pattern change: recent records differ noticeably from history"
            recommendations.append("Watch for other symptoms")
            recommendations.append("Consider recent changes in diet or environment")

    return Finding(
        type=AnomalyType.PATTERN_CHANGE,
        is_anomalous=is_anomalous,
        severity=severity,
        confidence=_confidence((1 - similarity) * 100),
        description=description,
        recommendations=recommendations,
        trigger_data=TriggerData(
            current_value=similarity,
            expected_value=EXPECTED_SIMILARITY,
            threshold=similarity_floor,
            timeframe="pattern comparison",
        ),
    )


# =============================================================================
# 4. CONSISTENCY
# =============================================================================

def consistency(analysis: pd.DataFrame) -> Finding:
    """
    Share of consecutive record pairs whose shape code jumps by more than 2.

    Needs at least 3 records; otherwise a non-anomalous finding with
    confidence 0 is returned.
    """
    n = len(analysis)
    if n < MIN_CONSISTENCY_RECORDS:
        return Finding(
            type=AnomalyType.CONSISTENCY_CHANGE,
            is_anomalous=False,
            severity=Severity.LOW,
            confidence=0.0,
            description="Insufficient data to detect consistency changes",
            recommendations=[],
            trigger_data=TriggerData(0.0, 0.0, 0.0, "analysis window"),
        )

    changes = shape_jumps(analysis["shape_code"].tolist(), SHAPE_JUMP)
    ratio = changes / (n - 1)
    is_anomalous = ratio > INCONSISTENCY_LIMIT

    severity = Severity.LOW
    description = "Consistency is normal"
    recommendations = []

    if is_anomalous:
        if ratio > INCONSISTENCY_HIGH:
            severity = Severity.HIGH
            description = f"Severe consistency problem: {ratio * 100:.1f}% of records change sharply"
            recommendations.append(SEE_VET_NOW)
            recommendations.append("A digestive disorder is possible")
        else:
            severity = Severity.MEDIUM
            description = "Consistency change: shape changes frequently between records"
            recommendations.append("Look at diet and environmental factors")
            recommendations.append("Consider changing the type of food")

    return Finding(
        type=AnomalyType.CONSISTENCY_CHANGE,
        is_anomalous=is_anomalous,
        severity=severity,
        confidence=_confidence(ratio * 100),
        description=description,
        recommendations=recommendations,
        trigger_data=TriggerData(
            current_value=float(ratio),
            expected_value=EXPECTED_INCONSISTENCY,
            threshold=INCONSISTENCY_LIMIT,
            timeframe="consecutive records",
        ),
    )


def run_all(
    analysis: pd.DataFrame,
    baseline: pd.DataFrame,
    analysis_days: int,
    baseline_days: int,
    thresholds: DetectionThresholds
) -> list:
    """
    Run the four detectors in fixed order and keep anomalous findings.

    An empty analysis window yields [] without running anything.
    """
    if analysis.empty:
        return []

    results = [
        frequency(analysis, baseline, analysis_days, baseline_days, thresholds),
        health_decline(analysis, thresholds),
        pattern_change(analysis, baseline, thresholds),
        consistency(analysis),
    ]
    return [f for f in results if f.is_anomalous]
