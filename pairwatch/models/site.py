from sqlalchemy import String, Float
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class Site(Base, TimestampMixin):
    __tablename__ = "sites"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    address: Mapped[str] = mapped_column(String(255), server_default="")
    city: Mapped[str] = mapped_column(String(100), server_default="")

    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    radius_m: Mapped[float] = mapped_column(Float, nullable=False, server_default="100")

    def __repr__(self):
        return f"<Site(id={self.id}, name='{self.name}')>"
