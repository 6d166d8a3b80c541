"""Unified calendar projection of bookings, cleaning and maintenance tasks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import ClassVar, Iterable, Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from hostdesk.errors import ValidationError
from hostdesk.intervals import as_instant
from hostdesk.models.booking import Booking, BookingStatus
from hostdesk.models.task import CleaningTask, MaintenanceTask, TaskStatus

logger = logging.getLogger(__name__)


class CalendarEventType(str, Enum):
    CHECKIN = "checkin"
    CHECKOUT = "checkout"
    CLEANING = "cleaning"
    MAINTENANCE = "maintenance"


# Same-instant events are listed in the order staff work through a turnover.
EVENT_PRECEDENCE = {
    CalendarEventType.CHECKOUT: 0,
    CalendarEventType.CLEANING: 1,
    CalendarEventType.MAINTENANCE: 2,
    CalendarEventType.CHECKIN: 3,
}


@dataclass(frozen=True)
class CalendarEvent:
    event_type: ClassVar[CalendarEventType]
    editable: ClassVar[bool] = False

    event_id: str
    property_id: int
    property_name: str
    title: str
    start: datetime
    end: datetime
    all_day: bool = False

    @property
    def is_point(self) -> bool:
        return self.end == self.start

    def sort_key(self) -> tuple:
        """Start first; the precedence only orders events sharing an exact start.

        All-day tasks start at midnight, so they lead their day ahead of any
        timed check-out.
        """
        return (self.start, EVENT_PRECEDENCE[self.event_type], self.event_id)


@dataclass(frozen=True)
class _StayEvent(CalendarEvent):
    booking_id: int = 0
    guest_name: str = ""
    num_adults: int = 0
    num_children: int = 0
    payment_status: str = ""


@dataclass(frozen=True)
class CheckInEvent(_StayEvent):
    event_type: ClassVar[CalendarEventType] = CalendarEventType.CHECKIN


@dataclass(frozen=True)
class CheckOutEvent(_StayEvent):
    event_type: ClassVar[CalendarEventType] = CalendarEventType.CHECKOUT


@dataclass(frozen=True)
class CleaningEvent(CalendarEvent):
    event_type: ClassVar[CalendarEventType] = CalendarEventType.CLEANING
    editable: ClassVar[bool] = True

    task_id: int = 0
    staff_name: str | None = None
    notes: str | None = None
    status: str = TaskStatus.PENDING.value


@dataclass(frozen=True)
class MaintenanceEvent(CalendarEvent):
    event_type: ClassVar[CalendarEventType] = CalendarEventType.MAINTENANCE
    editable: ClassVar[bool] = True

    task_id: int = 0
    staff_name: str | None = None
    description: str | None = None
    notes: str | None = None
    priority: str = "Medium"
    kind: str = "maintenance"
    status: str = TaskStatus.PENDING.value


def explode_booking(booking: Booking) -> tuple[CheckInEvent, CheckOutEvent]:
    """Materialize the check-in and check-out events of one booking."""
    if booking.checkout_date <= booking.checkin_date:
        raise ValidationError(f"Booking {booking.id} has check-out on or before check-in")
    prop = booking.prop
    common = dict(
        property_id=booking.property_id,
        property_name=prop.name,
        booking_id=booking.id,
        guest_name=booking.guest_name,
        num_adults=booking.num_adults or 0,
        num_children=booking.num_children or 0,
        payment_status=booking.payment_status,
    )
    checkin_at = datetime.combine(booking.checkin_date, prop.checkin_at)
    checkout_at = datetime.combine(booking.checkout_date, prop.checkout_at)
    return (
        CheckInEvent(
            event_id=f"checkin-{booking.id}",
            title=f"Check-in: {booking.guest_name}",
            start=checkin_at,
            end=checkin_at,
            **common,
        ),
        CheckOutEvent(
            event_id=f"checkout-{booking.id}",
            title=f"Check-out: {booking.guest_name}",
            start=checkout_at,
            end=checkout_at,
            **common,
        ),
    )


def booking_interval(checkin: CheckInEvent, checkout: CheckOutEvent) -> tuple[date, date]:
    """Recover a booking's ``(checkin_date, checkout_date)`` from its two events."""
    if checkin.booking_id != checkout.booking_id:
        raise ValidationError("Check-in and check-out events belong to different bookings")
    return checkin.start.date(), checkout.start.date()


def _cleaning_event(task: CleaningTask) -> CleaningEvent:
    return CleaningEvent(
        event_id=task.event_id,
        property_id=task.property_id,
        property_name=task.prop.name,
        title=task.title,
        start=task.start_at,
        end=task.end_at,
        all_day=task.all_day,
        task_id=task.id,
        staff_name=task.staff_name,
        notes=task.notes,
        status=task.status,
    )


def _maintenance_event(task: MaintenanceTask) -> MaintenanceEvent:
    return MaintenanceEvent(
        event_id=task.event_id,
        property_id=task.property_id,
        property_name=task.prop.name,
        title=task.title,
        start=task.start_at,
        end=task.end_at,
        all_day=task.all_day,
        task_id=task.id,
        staff_name=task.staff_name,
        description=task.description,
        notes=task.notes,
        priority=task.priority,
        kind=task.task_kind,
        status=task.status,
    )


def project_events(
    bookings: Iterable[Booking],
    cleaning_tasks: Iterable[CleaningTask] = (),
    maintenance_tasks: Iterable[MaintenanceTask] = (),
) -> Iterator[CalendarEvent]:
    """Project records into calendar events, in input order.

    Cancelled bookings and cancelled tasks are not shown.
    """
    for booking in bookings:
        if booking.status == BookingStatus.CANCELLED.value:
            continue
        yield from explode_booking(booking)
    for task in cleaning_tasks:
        if task.status != TaskStatus.CANCELLED.value:
            yield _cleaning_event(task)
    for task in maintenance_tasks:
        if task.status != TaskStatus.CANCELLED.value:
            yield _maintenance_event(task)


def in_window(event: CalendarEvent, start: datetime | None, end: datetime | None) -> bool:
    if event.is_point:
        return (start is None or event.start >= start) and (end is None or event.start < end)
    return (start is None or event.end > start) and (end is None or event.start < end)


def sort_events(events: Iterable[CalendarEvent]) -> list[CalendarEvent]:
    return sorted(events, key=CalendarEvent.sort_key)


class CalendarView:
    """A filtered, ordered calendar. Each iteration re-reads the store."""

    def __init__(
        self,
        session: Session,
        start: datetime | None = None,
        end: datetime | None = None,
        property_id: int | None = None,
        event_type: CalendarEventType | None = None,
    ) -> None:
        self._session = session
        self.start = start
        self.end = end
        self.property_id = property_id
        self.event_type = event_type

    def __iter__(self) -> Iterator[CalendarEvent]:
        events = (
            evt for evt in project_events(*self._load())
            if in_window(evt, self.start, self.end)
            and (self.event_type is None or evt.event_type == self.event_type)
        )
        return iter(sort_events(events))

    def _load(self) -> tuple[list[Booking], list[CleaningTask], list[MaintenanceTask]]:
        wanted = self.event_type
        bookings: list[Booking] = []
        cleanings: list[CleaningTask] = []
        maintenances: list[MaintenanceTask] = []

        if wanted in (None, CalendarEventType.CHECKIN, CalendarEventType.CHECKOUT):
            stmt = (
                select(Booking)
                .options(selectinload(Booking.prop))
                .where(Booking.status != BookingStatus.CANCELLED.value)
            )
            if self.property_id is not None:
                stmt = stmt.where(Booking.property_id == self.property_id)
            # Stay events sit on the check-in and check-out dates.
            if self.start is not None:
                stmt = stmt.where(Booking.checkout_date >= self.start.date())
            if self.end is not None:
                stmt = stmt.where(Booking.checkin_date <= self.end.date())
            bookings = list(self._session.scalars(stmt))

        for model, bucket, kind in (
            (CleaningTask, cleanings, CalendarEventType.CLEANING),
            (MaintenanceTask, maintenances, CalendarEventType.MAINTENANCE),
        ):
            if wanted not in (None, kind):
                continue
            stmt = (
                select(model)
                .options(selectinload(model.prop))
                .where(model.status != TaskStatus.CANCELLED.value)
            )
            if self.property_id is not None:
                stmt = stmt.where(model.property_id == self.property_id)
            if self.start is not None:
                stmt = stmt.where(model.end_at >= self.start)
            if self.end is not None:
                stmt = stmt.where(model.start_at <= self.end)
            bucket.extend(self._session.scalars(stmt))

        logger.debug(
            "Calendar load: %d bookings, %d cleanings, %d maintenance tasks",
            len(bookings), len(cleanings), len(maintenances),
        )
        return bookings, cleanings, maintenances


def _window_end(end: date | datetime) -> datetime:
    """A bare end date includes that whole day; a datetime end is exclusive."""
    if isinstance(end, datetime):
        return as_instant(end, time.min)
    return datetime.combine(end + timedelta(days=1), time.min)


class CalendarAggregator:
    """Builds calendar views for display and for the iCal export."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def events(
        self,
        start: date | datetime | None = None,
        end: date | datetime | None = None,
        property_id: int | None = None,
        event_type: CalendarEventType | str | None = None,
    ) -> CalendarView:
        window_start = as_instant(start, time.min) if start is not None else None
        window_end = _window_end(end) if end is not None else None
        if window_start is not None and window_end is not None and window_end <= window_start:
            raise ValidationError("Calendar window end must be after its start")
        if event_type is not None and not isinstance(event_type, CalendarEventType):
            try:
                event_type = CalendarEventType(event_type)
            except ValueError:
                raise ValidationError(f"Unknown calendar event type {event_type!r}") from None
        return CalendarView(
            self._session,
            start=window_start,
            end=window_end,
            property_id=property_id,
            event_type=event_type,
        )
