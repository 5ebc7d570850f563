from datetime import datetime
from sqlalchemy import ForeignKey, Float, DateTime, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class LocationSample(Base):
    __tablename__ = "location_samples"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id"), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_location_samples_employee_time", "employee_id", "timestamp"),)
