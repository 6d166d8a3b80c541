"""iCalendar export of calendar views."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

from icalendar import Calendar, Event

from hostdesk.modules.calendar.aggregator import (
    CalendarEvent,
    CheckInEvent,
    CheckOutEvent,
    CleaningEvent,
    MaintenanceEvent,
)

PRODID = "-//HostDesk//Property Calendar//EN"


def _describe(evt: CalendarEvent) -> str:
    if isinstance(evt, (CheckInEvent, CheckOutEvent)):
        return (
            f"Guests: {evt.num_adults} adults, {evt.num_children} children\n"
            f"Payment: {evt.payment_status}"
        )
    if isinstance(evt, MaintenanceEvent):
        lines = [f"Priority: {evt.priority}"]
        if evt.staff_name:
            lines.append(f"Assigned to: {evt.staff_name}")
        if evt.description:
            lines.append(evt.description)
        return "\n".join(lines)
    if isinstance(evt, CleaningEvent):
        lines = []
        if evt.staff_name:
            lines.append(f"Assigned to: {evt.staff_name}")
        if evt.notes:
            lines.append(evt.notes)
        return "\n".join(lines)
    return ""


def to_ical(events: Iterable[CalendarEvent], calendar_name: str = "HostDesk") -> bytes:
    """Render calendar events as an iCalendar document."""
    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    cal.add("x-wr-calname", calendar_name)
    stamp = datetime.now(timezone.utc)

    for evt in events:
        component = Event()
        component.add("uid", f"{evt.event_id}@hostdesk")
        component.add("dtstamp", stamp)
        component.add("summary", evt.title)
        component.add("categories", [evt.event_type.value])
        component.add("location", evt.property_name)
        if evt.all_day:
            component.add("dtstart", evt.start.date())
            end_date = evt.end.date()
            # DTEND of an all-day event must fall after DTSTART.
            if end_date <= evt.start.date():
                end_date = evt.start.date() + timedelta(days=1)
            component.add("dtend", end_date)
        else:
            component.add("dtstart", evt.start)
            component.add("dtend", evt.end)
        description = _describe(evt)
        if description:
            component.add("description", description)
        cal.add_component(component)

    return cal.to_ical()
