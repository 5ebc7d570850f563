from datetime import datetime
from typing import Optional
from sqlalchemy import ForeignKey, String, Float, Boolean, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class AIAlert(Base, TimestampMixin):
    __tablename__ = "ai_alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id"), nullable=False)
    # gpsStable / identicalSelfies / noPair / unrealisticMovement / lateAuth
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    details: Mapped[str] = mapped_column(String(500), nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)

    resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(100))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("ix_ai_alerts_employee_resolved", "employee_id", "resolved"),)

    def __repr__(self):
        return f"<AIAlert(type='{self.type}', severity='{self.severity}', resolved={self.resolved})>"
