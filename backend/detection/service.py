"""
Anomaly Detector
Reads a subject's analysis and baseline windows through a RecordReader
and runs the pure detectors over them.

Windows, relative to the caller-supplied `now`:
    analysis = [now - analysis_days, open end)
    baseline = [now - baseline_days, now - analysis_days)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, List, Optional

import pandas as pd

from core.exceptions import InsufficientDataError, InvalidWindowError
from core.models import records_frame

from . import detectors
from .models import DEFAULT_THRESHOLDS, DetectionSummary, DetectionThresholds, Finding, HealthPattern
from .patterns import health_pattern, summarize

if TYPE_CHECKING:
    from db.interfaces import RecordReader

logger = logging.getLogger(__name__)


@dataclass
class DetectionWindows:
    """The two record windows of one subject, read once"""
    subject_id: str
    analysis: pd.DataFrame
    baseline: pd.DataFrame
    analysis_days: int
    baseline_days: int


def check_windows(analysis_days: int, baseline_days: int) -> None:
    if analysis_days < 1 or baseline_days < 1:
        raise InvalidWindowError("Window sizes must be at least one day")
    if analysis_days > baseline_days:
        raise InvalidWindowError(
            f"Analysis window ({analysis_days}d) must not exceed baseline window ({baseline_days}d)"
        )


class AnomalyDetector:
    """
    Stateless detection service.

    Holds only its RecordReader and defaults; safe to share between
    concurrent evaluations.
    """

    def __init__(
        self,
        reader: "RecordReader",
        analysis_window_days: int = 14,
        baseline_window_days: int = 30,
        thresholds: DetectionThresholds = DEFAULT_THRESHOLDS
    ):
        check_windows(analysis_window_days, baseline_window_days)
        self._reader = reader
        self.analysis_window_days = analysis_window_days
        self.baseline_window_days = baseline_window_days
        self.thresholds = thresholds

    def read_windows(
        self,
        subject_id: str,
        now: Optional[datetime] = None,
        analysis_window_days: Optional[int] = None,
        baseline_window_days: Optional[int] = None
    ) -> DetectionWindows:
        analysis_days = analysis_window_days or self.analysis_window_days
        baseline_days = baseline_window_days or self.baseline_window_days
        check_windows(analysis_days, baseline_days)

        now = now or datetime.now()
        analysis_start = now - timedelta(days=analysis_days)
        baseline_start = now - timedelta(days=baseline_days)

        analysis = self._reader.fetch(subject_id, analysis_start)
        baseline = self._reader.fetch(subject_id, baseline_start, analysis_start)

        return DetectionWindows(
            subject_id=subject_id,
            analysis=records_frame(analysis),
            baseline=records_frame(baseline),
            analysis_days=analysis_days,
            baseline_days=baseline_days,
        )

    def detect_in_windows(
        self,
        windows: DetectionWindows,
        thresholds: Optional[DetectionThresholds] = None
    ) -> List[Finding]:
        """Run the detectors over windows that were already read"""
        findings = detectors.run_all(
            windows.analysis,
            windows.baseline,
            windows.analysis_days,
            windows.baseline_days,
            thresholds or self.thresholds,
        )
        logger.info(
            "Detection finished for %s: %d records analysed, %d findings",
            windows.subject_id, len(windows.analysis), len(findings)
        )
        return findings

    def detect_anomalies(
        self,
        subject_id: str,
        analysis_window_days: Optional[int] = None,
        baseline_window_days: Optional[int] = None,
        thresholds: Optional[DetectionThresholds] = None,
        now: Optional[datetime] = None
    ) -> List[Finding]:
        """
        Detect anomalies for one subject.

        Findings come back in detector order (frequency, health_decline,
        pattern_change, consistency_change), not sorted by severity.
        An empty analysis window gives [].

        Raises:
            InvalidWindowError: analysis window longer than baseline
            RecordReaderError: records could not be read
        """
        windows = self.read_windows(subject_id, now, analysis_window_days, baseline_window_days)
        return self.detect_in_windows(windows, thresholds)

    def analyze_health_pattern(
        self,
        subject_id: str,
        days: int = 30,
        now: Optional[datetime] = None
    ) -> HealthPattern:
        if days < 1:
            raise InvalidWindowError("days must be at least 1")
        now = now or datetime.now()
        records = self._reader.fetch(subject_id, now - timedelta(days=days))
        if not records:
            raise InsufficientDataError(f"No records for {subject_id} in the last {days} days")
        return health_pattern(records_frame(records), days)

    def summary(self, subject_id: str, now: Optional[datetime] = None) -> DetectionSummary:
        return summarize(self.detect_anomalies(subject_id, now=now))
