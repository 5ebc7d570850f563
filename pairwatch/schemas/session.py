import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pairwatch.engine.domain import (
    CheckInStatus,
    CheckInType,
    SessionStatus,
    VerificationMethod,
)
from pairwatch.engine.verification import Evidence, Factor


# --- Input ---
class EvidenceIn(BaseModel):
    """One verification attempt; send only the factors you have."""

    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0)
    face_sample: Optional[List[float]] = Field(None, min_length=1)
    camera_unavailable: bool = False
    answer: Optional[str] = Field(None, max_length=255)

    def to_evidence(self) -> Evidence:
        return Evidence(
            latitude=self.latitude,
            longitude=self.longitude,
            face_sample=self.face_sample,
            camera_unavailable=self.camera_unavailable,
            answer=self.answer,
        )


class StartRequest(EvidenceIn):
    employee_id: str
    site_id: str
    location_consent: bool = False


class EndRequest(BaseModel):
    evidence: Optional[EvidenceIn] = None


class EmergencyRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class LocationIn(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    timestamp: Optional[datetime.datetime] = None


# --- Output ---
class CheckInRead(BaseModel):
    id: str
    timestamp: datetime.datetime
    type: CheckInType
    verification_method: VerificationMethod
    status: CheckInStatus
    latitude: float
    longitude: float
    ai_confidence_score: float
    pair_present: bool
    distance_to_pair: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)


class SessionRead(BaseModel):
    id: str
    employee_id: str
    site_id: str
    pair_id: str
    status: SessionStatus
    start_time: datetime.datetime
    end_time: Optional[datetime.datetime] = None
    total_minutes: float
    time_with_pair_minutes: float
    reliability_score: int
    next_check_in_at: Optional[datetime.datetime] = None
    reverification_due: bool
    pair_present: bool
    last_pair_validation_at: Optional[datetime.datetime] = None
    emergency_flag: bool
    emergency_reason: Optional[str] = None
    check_ins: List[CheckInRead] = []

    model_config = ConfigDict(from_attributes=True)


class StepRead(BaseModel):
    """Progress of a multi-factor challenge."""

    complete: bool
    next_factor: Optional[Factor] = None
    session: Optional[SessionRead] = None
    check_in: Optional[CheckInRead] = None
    new_alerts: int = 0


class SummaryRead(BaseModel):
    session_id: str
    employee_id: str
    site_id: str
    status: SessionStatus
    start_time: datetime.datetime
    end_time: Optional[datetime.datetime] = None
    total_minutes: int
    time_with_pair_minutes: int
    check_ins: int
    verified_check_ins: int
    failed_check_ins: int
    reliability_score: int
    emergency_flag: bool

    model_config = ConfigDict(from_attributes=True)
