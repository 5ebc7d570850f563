from datetime import datetime
from typing import List, Optional
from sqlalchemy import ForeignKey, String, Float, Boolean, Integer, DateTime, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin


class PresenceSession(Base, TimestampMixin):
    __tablename__ = "presence_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    employee_id: Mapped[str] = mapped_column(
        ForeignKey("employees.id"), nullable=False, index=True
    )
    site_id: Mapped[str] = mapped_column(ForeignKey("sites.id"), nullable=False)
    pair_id: Mapped[str] = mapped_column(ForeignKey("pairs.id"), nullable=False)

    # present / paused / suspended / ended
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    location_tracking_consented: Mapped[bool] = mapped_column(Boolean, default=False)

    total_minutes: Mapped[float] = mapped_column(Float, default=0.0)
    time_with_pair_minutes: Mapped[float] = mapped_column(Float, default=0.0)
    reliability_score: Mapped[int] = mapped_column(Integer, default=100)

    # Persisted so the re-verification timer survives a restart.
    next_check_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    reverification_due: Mapped[bool] = mapped_column(Boolean, default=False)

    pair_present: Mapped[bool] = mapped_column(Boolean, default=False)
    last_pair_validation_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_accrual_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    emergency_flag: Mapped[bool] = mapped_column(Boolean, default=False)
    emergency_reason: Mapped[Optional[str]] = mapped_column(String(500))

    check_ins: Mapped[List["CheckIn"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="CheckIn.timestamp",
        lazy="selectin",
    )

    # One open session per employee, enforced by the database as well.
    __table_args__ = (
        Index(
            "uq_presence_sessions_open_employee",
            "employee_id",
            unique=True,
            postgresql_where=text("status <> 'ended'"),
        ),
    )

    def __repr__(self):
        return f"<PresenceSession(id={self.id}, employee_id={self.employee_id}, status='{self.status}')>"


class CheckIn(Base):
    __tablename__ = "check_ins"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    session_id: Mapped[str] = mapped_column(
        ForeignKey("presence_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id"), nullable=False)
    site_id: Mapped[str] = mapped_column(ForeignKey("sites.id"), nullable=False)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # start / periodic / end
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    # facial / question
    verification_method: Mapped[str] = mapped_column(String(20), nullable=False)
    # verified / failed
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    ai_confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    pair_present: Mapped[bool] = mapped_column(Boolean, default=False)
    distance_to_pair: Mapped[Optional[float]] = mapped_column(Float)
    capture_digest: Mapped[Optional[str]] = mapped_column(String(64))

    session: Mapped[PresenceSession] = relationship(back_populates="check_ins")

    __table_args__ = (Index("ix_check_ins_employee_time", "employee_id", "timestamp"),)

    def __repr__(self):
        return f"<CheckIn(employee_id={self.employee_id}, type='{self.type}', status='{self.status}')>"
