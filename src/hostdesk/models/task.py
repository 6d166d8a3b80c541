"""Cleaning and maintenance task models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hostdesk.database import Base


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class MaintenanceKind(str, Enum):
    MAINTENANCE = "maintenance"
    RENOVATION = "renovation"


ACTIVE_TASK_STATUSES = (TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value)

TASK_TRANSITIONS: dict[str, frozenset[str]] = {
    TaskStatus.PENDING.value: frozenset({
        TaskStatus.IN_PROGRESS.value, TaskStatus.COMPLETED.value, TaskStatus.CANCELLED.value,
    }),
    TaskStatus.IN_PROGRESS.value: frozenset({TaskStatus.COMPLETED.value, TaskStatus.CANCELLED.value}),
    TaskStatus.COMPLETED.value: frozenset(),
    TaskStatus.CANCELLED.value: frozenset(),
}


class CleaningTask(Base):
    __tablename__ = "cleaning_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id"), nullable=False)
    booking_id: Mapped[int | None] = mapped_column(ForeignKey("bookings.id"), nullable=True)
    title: Mapped[str] = mapped_column(String(300), default="Cleaning")
    start_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    all_day: Mapped[bool] = mapped_column(Boolean, default=False)
    staff_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=TaskStatus.PENDING.value)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc))

    prop: Mapped["Property"] = relationship(back_populates="cleaning_tasks")  # noqa: F821
    booking: Mapped["Booking | None"] = relationship(back_populates="cleaning_tasks")  # noqa: F821

    kind = "cleaning"

    def __repr__(self) -> str:
        return f"<CleaningTask id={self.id} {self.start_at}..{self.end_at} status={self.status!r}>"

    @property
    def event_id(self) -> str:
        return f"cleaning-{self.id}"

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_TASK_STATUSES


class MaintenanceTask(Base):
    __tablename__ = "maintenance_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    all_day: Mapped[bool] = mapped_column(Boolean, default=False)
    staff_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=TaskStatus.PENDING.value)
    priority: Mapped[str] = mapped_column(String(10), default=TaskPriority.MEDIUM.value)
    task_kind: Mapped[str] = mapped_column(String(20), default=MaintenanceKind.MAINTENANCE.value)
    cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(timezone.utc))

    prop: Mapped["Property"] = relationship(back_populates="maintenance_tasks")  # noqa: F821

    kind = "maintenance"

    def __repr__(self) -> str:
        return f"<MaintenanceTask id={self.id} title={self.title!r} status={self.status!r}>"

    @property
    def event_id(self) -> str:
        return f"maintenance-{self.id}"

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_TASK_STATUSES

    @property
    def is_renovation(self) -> bool:
        return self.task_kind == MaintenanceKind.RENOVATION.value
