"""
Plain records the presence engine works on.

Persistence rows (pairwatch.models) and API shapes (pairwatch.schemas) are
converted to and from these at the edges, so the engine itself never sees an
ORM object or a request body.
"""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pairwatch.errors import PreconditionError, ValidationError


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, enum.Enum):
    PRESENT = "present"
    PAUSED = "paused"
    SUSPENDED = "suspended"
    ENDED = "ended"


class CheckInType(str, enum.Enum):
    START = "start"
    PERIODIC = "periodic"
    END = "end"


class VerificationMethod(str, enum.Enum):
    FACIAL = "facial"
    QUESTION = "question"


class CheckInStatus(str, enum.Enum):
    VERIFIED = "verified"
    FAILED = "failed"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AlertType(str, enum.Enum):
    GPS_STABLE = "gpsStable"
    IDENTICAL_SELFIES = "identicalSelfies"
    NO_PAIR = "noPair"
    UNREALISTIC_MOVEMENT = "unrealisticMovement"
    LATE_AUTH = "lateAuth"


# Every AlertType has exactly one severity; tests assert the table is total.
ALERT_SEVERITY: dict[AlertType, Severity] = {
    AlertType.GPS_STABLE: Severity.MEDIUM,
    AlertType.IDENTICAL_SELFIES: Severity.HIGH,
    AlertType.NO_PAIR: Severity.MEDIUM,
    AlertType.UNREALISTIC_MOVEMENT: Severity.HIGH,
    AlertType.LATE_AUTH: Severity.LOW,
}


@dataclass(frozen=True)
class Consents:
    geolocation: bool = False
    biometric: bool = False
    privacy: bool = False


@dataclass(frozen=True)
class Employee:
    id: str
    first_name: str
    last_name: str
    biometric_reference: list[float] | None = None
    security_question: str | None = None
    security_answer_hash: str | None = None
    consents: Consents = field(default_factory=Consents)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Site:
    id: str
    name: str
    latitude: float
    longitude: float
    radius_m: float
    address: str = ""
    city: str = ""

    def __post_init__(self):
        if self.radius_m <= 0:
            raise ValidationError(f"Site radius must be positive, got {self.radius_m}")
        if not -90.0 <= self.latitude <= 90.0 or not -180.0 <= self.longitude <= 180.0:
            raise ValidationError("Site coordinates are out of range")


@dataclass(frozen=True)
class Pair:
    id: str
    employee_a_id: str
    employee_b_id: str
    site_id: str
    active: bool = True

    def __post_init__(self):
        if self.employee_a_id == self.employee_b_id:
            raise ValidationError("An employee cannot be paired with themselves")

    def includes(self, employee_id: str) -> bool:
        return employee_id in (self.employee_a_id, self.employee_b_id)

    def partner_of(self, employee_id: str) -> str:
        if employee_id == self.employee_a_id:
            return self.employee_b_id
        if employee_id == self.employee_b_id:
            return self.employee_a_id
        raise ValidationError(f"Employee {employee_id} is not part of pair {self.id}")


@dataclass(frozen=True)
class LocationSample:
    latitude: float
    longitude: float
    timestamp: datetime


@dataclass(frozen=True)
class CheckIn:
    employee_id: str
    site_id: str
    timestamp: datetime
    type: CheckInType
    verification_method: VerificationMethod
    latitude: float
    longitude: float
    status: CheckInStatus
    ai_confidence_score: float
    pair_present: bool
    distance_to_pair: float | None = None
    capture_digest: str | None = None
    id: str = field(default_factory=new_id)

    @property
    def location(self) -> LocationSample:
        return LocationSample(self.latitude, self.longitude, self.timestamp)


@dataclass(frozen=True)
class AlertDraft:
    employee_id: str
    type: AlertType
    severity: Severity
    timestamp: datetime
    details: str
    confidence_score: float


@dataclass
class AIAlert:
    id: str
    employee_id: str
    type: AlertType
    severity: Severity
    timestamp: datetime
    details: str
    confidence_score: float
    resolved: bool = False
    resolved_by: str | None = None
    resolved_at: datetime | None = None

    @classmethod
    def from_draft(cls, draft: AlertDraft) -> "AIAlert":
        return cls(
            id=new_id(),
            employee_id=draft.employee_id,
            type=draft.type,
            severity=draft.severity,
            timestamp=draft.timestamp,
            details=draft.details,
            confidence_score=draft.confidence_score,
        )


@dataclass
class PresenceSession:
    id: str
    employee_id: str
    site_id: str
    pair_id: str
    start_time: datetime
    location_tracking_consented: bool
    status: SessionStatus = SessionStatus.PRESENT
    end_time: datetime | None = None
    check_ins: list[CheckIn] = field(default_factory=list)
    total_minutes: float = 0.0
    time_with_pair_minutes: float = 0.0
    reliability_score: int = 100
    next_check_in_at: datetime | None = None
    reverification_due: bool = False
    pair_present: bool = False
    last_pair_validation_at: datetime | None = None
    emergency_flag: bool = False
    emergency_reason: str | None = None
    last_accrual_at: datetime | None = None

    @property
    def is_ended(self) -> bool:
        return self.status == SessionStatus.ENDED

    def ensure_open(self) -> None:
        if self.is_ended:
            raise PreconditionError(f"Session {self.id} has ended and is read-only")

    def append_check_in(self, check_in: CheckIn) -> None:
        self.ensure_open()
        if self.check_ins and check_in.timestamp < self.check_ins[-1].timestamp:
            raise ValidationError("Check-ins must be appended in chronological order")
        self.check_ins.append(check_in)

    def accrue(self, now: datetime) -> None:
        """Add the time spent Present since the last accrual to the counters."""
        if self.status == SessionStatus.PRESENT and self.last_accrual_at is not None:
            elapsed = max((now - self.last_accrual_at).total_seconds(), 0.0) / 60.0
            self.total_minutes += elapsed
            if self.pair_present:
                self.time_with_pair_minutes += elapsed
        self.last_accrual_at = now

    @property
    def failed_check_ins(self) -> int:
        return sum(1 for c in self.check_ins if c.status == CheckInStatus.FAILED)
