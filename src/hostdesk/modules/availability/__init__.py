"""Availability and property status engine."""

from hostdesk.modules.availability.engine import (
    AvailabilityEngine,
    ScheduleResult,
    StatusReport,
)

__all__ = ["AvailabilityEngine", "ScheduleResult", "StatusReport"]
