"""Database models."""

from hostdesk.models.booking import Booking, BookingStatus, PaymentStatus
from hostdesk.models.property import Property, PropertyStatus
from hostdesk.models.task import (
    CleaningTask,
    MaintenanceKind,
    MaintenanceTask,
    TaskPriority,
    TaskStatus,
)

__all__ = [
    "Booking",
    "BookingStatus",
    "CleaningTask",
    "MaintenanceKind",
    "MaintenanceTask",
    "PaymentStatus",
    "Property",
    "PropertyStatus",
    "TaskPriority",
    "TaskStatus",
]
