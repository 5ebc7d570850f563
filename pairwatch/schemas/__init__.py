from .alert import AlertRead, AlertResolve
from .pair_code import PairCodeRead, PairValidateRequest
from .roster import (
    ConsentsSchema,
    EmployeeCreate,
    EmployeeRead,
    PairCreate,
    PairRead,
    SiteCreate,
    SiteRead,
)
from .session import (
    CheckInRead,
    EmergencyRequest,
    EndRequest,
    EvidenceIn,
    LocationIn,
    SessionRead,
    StartRequest,
    StepRead,
    SummaryRead,
)

__all__ = [
    "AlertRead",
    "AlertResolve",
    "PairCodeRead",
    "PairValidateRequest",
    "ConsentsSchema",
    "EmployeeCreate",
    "EmployeeRead",
    "PairCreate",
    "PairRead",
    "SiteCreate",
    "SiteRead",
    "CheckInRead",
    "EmergencyRequest",
    "EndRequest",
    "EvidenceIn",
    "LocationIn",
    "SessionRead",
    "StartRequest",
    "StepRead",
    "SummaryRead",
]
