"""
Detection Module
Anomaly detection over a subject's recent records.

Structure:
    detection/
    ├── models.py     → Finding, DetectionThresholds, HealthPattern (dataclasses)
    ├── patterns.py   → Distribution, similarity, run-length helpers
    ├── detectors.py  → frequency / health_decline / pattern_change / consistency
    └── service.py    → AnomalyDetector (reads windows through a RecordReader)

Usage:
    from detection import AnomalyDetector

    detector = AnomalyDetector(reader)
    findings = detector.detect_anomalies("pet-1")

Design Principles:
    ✓ detectors and patterns are PURE (frames + thresholds → findings)
    ✓ NO database access outside service.py
    ✓ NO clock reads beyond the caller-supplied `now`
"""

from . import detectors

from .models import (
    AnomalyType,
    Severity,
    DetectionThresholds,
    DEFAULT_THRESHOLDS,
    TriggerData,
    Finding,
    HealthPattern,
    DetectionSummary,
)

from .patterns import summarize
from .service import AnomalyDetector, DetectionWindows

__all__ = [
    # Modules
    "detectors",
    # Types
    "AnomalyType",
    "Severity",
    "DetectionThresholds",
    "DEFAULT_THRESHOLDS",
    "TriggerData",
    "Finding",
    "HealthPattern",
    "DetectionSummary",
    # Service
    "AnomalyDetector",
    "DetectionWindows",
    "summarize",
]
