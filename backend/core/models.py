"""
Domain Models
The SINGLE SOURCE OF TRUTH for record formats.

After normalization, the detector only sees these types.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Health Status
# =============================================================================

class HealthStatus(str, Enum):
    """Health grading attached to each record at capture time"""
    HEALTHY = "healthy"
    WARNING = "warning"
    CONCERNING = "concerning"


# =============================================================================
# Subject
# =============================================================================

@dataclass(frozen=True, order=True)
class Subject:
    """
    A tracked pet, scoped to its owner.

    Alert rules are owned by users, records by pets; a subject joins the two.
    """
    user_id: str
    pet_id: str

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "pet_id": self.pet_id}

    def __str__(self) -> str:
        return f"{self.user_id}/{self.pet_id}"


# =============================================================================
# EventRecord — The Core Data Contract
# =============================================================================

class EventRecord(BaseModel):
    """
    One logged observation for a subject.

    Immutable once created. The detector never sees database rows,
    only EventRecords.

    Fields:
        subject_id: Pet the record belongs to
        timestamp: When the observation was logged
        shape_code: Ordinal shape category 1-7 ("type4" is accepted)
        health_status: healthy / warning / concerning
        confidence: Detection confidence of the record itself (0-100)
        id: Optional storage id
    """
    model_config = ConfigDict(frozen=True)

    subject_id: str = Field(..., min_length=1)
    timestamp: datetime
    shape_code: int = Field(..., ge=1, le=7)
    health_status: HealthStatus
    confidence: float = Field(default=0.0, ge=0, le=100)
    id: Optional[str] = None

    @field_validator('shape_code', mode='before')
    @classmethod
    def parse_shape_code(cls, v):
        """Accept the stored 'typeN' form as well as plain integers"""
        if isinstance(v, str):
            v = v.strip().lower()
            if v.startswith('type'):
                v = v[4:]
            return int(v)
        return v

    @field_validator('timestamp', mode='before')
    @classmethod
    def parse_timestamp(cls, v):
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace('Z', '+00:00'))
        return v


RECORD_COLUMNS = ["timestamp", "shape_code", "health_status", "confidence"]


def records_frame(records: List[EventRecord]) -> pd.DataFrame:
    """
    Convert records to a DataFrame for the detectors.

    Keeps the reader's order. An empty list yields an empty frame
    with the expected columns.
    """
    if not records:
        return pd.DataFrame(columns=RECORD_COLUMNS)

    return pd.DataFrame(
        {
            "timestamp": [r.timestamp for r in records],
            "shape_code": [r.shape_code for r in records],
            "health_status": [r.health_status.value for r in records],
            "confidence": [r.confidence for r in records],
        }
    )
