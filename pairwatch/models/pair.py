from sqlalchemy import ForeignKey, String, Boolean, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class Pair(Base, TimestampMixin):
    __tablename__ = "pairs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    employee_a_id: Mapped[str] = mapped_column(
        ForeignKey("employees.id"), nullable=False, index=True
    )
    employee_b_id: Mapped[str] = mapped_column(
        ForeignKey("employees.id"), nullable=False, index=True
    )
    site_id: Mapped[str] = mapped_column(ForeignKey("sites.id"), nullable=False, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        CheckConstraint("employee_a_id <> employee_b_id", name="ck_pair_distinct_members"),
        Index("ix_pairs_site_active", "site_id", "active"),
    )

    def __repr__(self):
        return f"<Pair(id={self.id}, a={self.employee_a_id}, b={self.employee_b_id})>"
