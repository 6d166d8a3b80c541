"""Calendar event aggregation and export."""

from hostdesk.modules.calendar.aggregator import (
    CalendarAggregator,
    CalendarEvent,
    CalendarEventType,
    CalendarView,
    CheckInEvent,
    CheckOutEvent,
    CleaningEvent,
    MaintenanceEvent,
    booking_interval,
    explode_booking,
    project_events,
)
from hostdesk.modules.calendar.export import to_ical

__all__ = [
    "CalendarAggregator",
    "CalendarEvent",
    "CalendarEventType",
    "CalendarView",
    "CheckInEvent",
    "CheckOutEvent",
    "CleaningEvent",
    "MaintenanceEvent",
    "booking_interval",
    "explode_booking",
    "project_events",
    "to_ical",
]
