from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Employees ---
class ConsentsSchema(BaseModel):
    geolocation: bool = False
    biometric: bool = False
    privacy: bool = False

    model_config = ConfigDict(from_attributes=True)


class EmployeeBase(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100, examples=["Awa"])
    last_name: str = Field("", max_length=100, examples=["Diallo"])
    security_question: Optional[str] = Field(None, max_length=255)
    consents: ConsentsSchema = Field(default_factory=ConsentsSchema)


class EmployeeCreate(EmployeeBase):
    id: Optional[str] = Field(None, max_length=36, examples=["EMP-001"])
    security_answer: Optional[str] = Field(None, max_length=255)
    # Enrolled face embedding, produced by the capture client
    biometric_reference: Optional[List[float]] = Field(
        None, min_length=1, description="face embedding vector"
    )


class EmployeeRead(EmployeeBase):
    id: str
    enrolled: bool = False

    model_config = ConfigDict(from_attributes=True)


# --- Sites ---
class SiteBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=150, examples=["Plateau depot"])
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    address: str = Field("", max_length=255)
    city: str = Field("", max_length=100)


class SiteCreate(SiteBase):
    # Falls back to DEFAULT_SITE_RADIUS_M
    radius_m: Optional[float] = Field(None, gt=0)


class SiteRead(SiteBase):
    id: str
    radius_m: float

    model_config = ConfigDict(from_attributes=True)


# --- Pairs ---
class PairCreate(BaseModel):
    employee_a_id: str
    employee_b_id: str
    site_id: str


class PairRead(PairCreate):
    id: str
    active: bool

    model_config = ConfigDict(from_attributes=True)
