import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from pairwatch.engine.domain import AlertType, Severity


class AlertRead(BaseModel):
    id: str
    employee_id: str
    type: AlertType
    severity: Severity
    timestamp: datetime.datetime
    details: str
    confidence_score: float
    resolved: bool
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AlertResolve(BaseModel):
    resolved_by: str = Field(..., min_length=1, max_length=100, examples=["supervisor-7"])
