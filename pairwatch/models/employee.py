from typing import List, Optional
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from pgvector.sqlalchemy import Vector

from pairwatch.config import settings
from .base import Base, TimestampMixin


class Employee(Base, TimestampMixin):
    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, server_default="")

    # Enrolled face embedding; NULL until the employee enrolls.
    biometric_reference: Mapped[Optional[List[float]]] = mapped_column(
        Vector(settings.FACE_EMBEDDING_DIM), nullable=True
    )

    security_question: Mapped[Optional[str]] = mapped_column(String(255))
    # pbkdf2_sha256$iterations$salt$digest, never the plaintext answer
    security_answer_hash: Mapped[Optional[str]] = mapped_column(String(255))

    geolocation_consent: Mapped[bool] = mapped_column(Boolean, default=False)
    biometric_consent: Mapped[bool] = mapped_column(Boolean, default=False)
    privacy_consent: Mapped[bool] = mapped_column(Boolean, default=False)

    def __repr__(self):
        return f"<Employee(id={self.id}, name='{self.first_name} {self.last_name}')>"
