"""Property model."""

from __future__ import annotations

from datetime import datetime, time, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hostdesk.database import Base


class PropertyStatus(str, Enum):
    AVAILABLE = "Available"
    OCCUPIED = "Occupied"
    MAINTENANCE = "Maintenance"
    RENOVATION = "Renovation"


class Property(Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    location: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    bedrooms: Mapped[int] = mapped_column(Integer, default=1)
    bathrooms: Mapped[int] = mapped_column(Integer, default=1)
    max_guests: Mapped[int] = mapped_column(Integer, default=4)
    checkin_time: Mapped[str] = mapped_column(String(10), default="15:00")
    checkout_time: Mapped[str] = mapped_column(String(10), default="11:00")
    status: Mapped[str] = mapped_column(String(20), default=PropertyStatus.AVAILABLE.value)
    is_actively_listed: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_list_when_vacant: Mapped[bool] = mapped_column(Boolean, default=False)
    listed_on: Mapped[list[str]] = mapped_column(JSON, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    bookings: Mapped[list["Booking"]] = relationship(back_populates="prop")  # noqa: F821
    cleaning_tasks: Mapped[list["CleaningTask"]] = relationship(back_populates="prop")  # noqa: F821
    maintenance_tasks: Mapped[list["MaintenanceTask"]] = relationship(back_populates="prop")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Property id={self.id} name={self.name!r} status={self.status!r}>"

    @property
    def checkin_at(self) -> time:
        return time.fromisoformat(self.checkin_time or "15:00")

    @property
    def checkout_at(self) -> time:
        return time.fromisoformat(self.checkout_time or "11:00")
