"""
Anomalies API
Read-only detection endpoints for a single pet.

Endpoints:
    GET /api/anomalies/{pet_id}/detect   → Findings for the current windows
    GET /api/anomalies/{pet_id}/pattern  → Health pattern over N days
    GET /api/anomalies/{pet_id}/summary  → Risk summary
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from alerts import AlertEngine, get_alert_engine
from core.exceptions import (
    AlertEngineError,
    InsufficientDataError,
    InvalidWindowError,
)
from detection import AnomalyDetector


router = APIRouter(prefix="/anomalies", tags=["Anomalies"])


def get_detector(engine: AlertEngine = Depends(get_alert_engine)) -> AnomalyDetector:
    return engine.detector


# Sync handlers: FastAPI runs them in its threadpool, so record reads
# do not block the event loop.

@router.get("/{pet_id}/detect")
def detect(
    pet_id: str,
    analysis_days: Optional[int] = Query(default=None, ge=1),
    baseline_days: Optional[int] = Query(default=None, ge=1),
    detector: AnomalyDetector = Depends(get_detector)
):
    """
    Detect anomalies for a pet.

    Findings are returned in detector order: frequency, health_decline,
    pattern_change, consistency_change.
    """
    try:
        findings = detector.detect_anomalies(
            pet_id,
            analysis_window_days=analysis_days,
            baseline_window_days=baseline_days,
        )
    except InvalidWindowError as e:
        raise HTTPException(400, str(e))
    except AlertEngineError as e:
        raise HTTPException(503, f"Records unavailable: {e}")

    return {
        "pet_id": pet_id,
        "count": len(findings),
        "anomalies": [f.to_dict() for f in findings]
    }


@router.get("/{pet_id}/pattern")
def health_pattern(
    pet_id: str,
    days: int = Query(default=30, ge=1, le=365),
    detector: AnomalyDetector = Depends(get_detector)
):
    """Health status, shape and time-of-day distributions over the last N days"""
    try:
        pattern = detector.analyze_health_pattern(pet_id, days)
    except InsufficientDataError as e:
        raise HTTPException(404, str(e))
    except AlertEngineError as e:
        raise HTTPException(503, f"Records unavailable: {e}")

    return {"pet_id": pet_id, "pattern": pattern.to_dict()}


@router.get("/{pet_id}/summary")
def summary(pet_id: str, detector: AnomalyDetector = Depends(get_detector)):
    """Overall risk and de-duplicated recommendations"""
    try:
        result = detector.summary(pet_id)
    except AlertEngineError as e:
        raise HTTPException(503, f"Records unavailable: {e}")

    return {"pet_id": pet_id, "summary": result.to_dict()}
