import datetime

from pydantic import BaseModel, ConfigDict, Field


class PairCodeRead(BaseModel):
    code: str
    employee_id: str
    pair_id: str
    issued_at: datetime.datetime
    expires_at: datetime.datetime

    model_config = ConfigDict(from_attributes=True)


class PairValidateRequest(BaseModel):
    code: str = Field(..., min_length=1)
    # The scanner must explicitly confirm the partner is next to them
    confirmed: bool = False
