"""Request and response bodies for the HTTP API."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hostdesk.intervals import Commitment, ConflictResult
from hostdesk.models.booking import BookingStatus, PaymentStatus
from hostdesk.models.property import PropertyStatus
from hostdesk.models.task import MaintenanceKind, TaskPriority, TaskStatus
from hostdesk.modules.availability import ScheduleResult, StatusReport
from hostdesk.modules.calendar import CalendarEvent
from hostdesk.modules.listing import ListingState

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# --- Properties ---


class PropertyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    location: str = ""
    daily_rate: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    bedrooms: int = Field(1, ge=0)
    bathrooms: int = Field(1, ge=0)
    max_guests: int = Field(4, ge=0)
    checkin_time: str = Field("15:00", pattern=TIME_PATTERN)
    checkout_time: str = Field("11:00", pattern=TIME_PATTERN)
    auto_list_when_vacant: bool = False
    notes: str | None = None


class PropertyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    location: str
    daily_rate: Decimal
    bedrooms: int
    bathrooms: int
    max_guests: int
    checkin_time: str
    checkout_time: str
    status: PropertyStatus
    is_actively_listed: bool
    listed_on: list[str]
    auto_list_when_vacant: bool
    notes: str | None = None


class StatusReportOut(BaseModel):
    stored: PropertyStatus
    derived: PropertyStatus
    as_of: datetime
    warning: str | None = None
    auto_listed: bool = False

    @classmethod
    def of(cls, report: StatusReport) -> StatusReportOut:
        return cls(
            stored=report.stored,
            derived=report.derived,
            as_of=report.as_of,
            warning=report.warning.message if report.warning else None,
            auto_listed=report.auto_listed,
        )


class PropertyDetail(BaseModel):
    property: PropertyOut
    status: StatusReportOut


class PropertyStatusUpdate(BaseModel):
    status: PropertyStatus


# --- Listing ---


class ListingUpdate(BaseModel):
    is_actively_listed: bool | None = None
    listed_on: list[str] | None = None
    auto_list_when_vacant: bool | None = None


class ListingOut(BaseModel):
    property_id: int
    is_actively_listed: bool
    listed_on: list[str]
    auto_list_when_vacant: bool

    @classmethod
    def of(cls, state: ListingState) -> ListingOut:
        return cls(
            property_id=state.property_id,
            is_actively_listed=state.is_actively_listed,
            listed_on=list(state.listed_on),
            auto_list_when_vacant=state.auto_list_when_vacant,
        )


# --- Bookings ---


class BookingCreate(BaseModel):
    property_id: int
    guest_name: str = Field(..., min_length=1, max_length=200)
    guest_email: str | None = None
    guest_phone: str | None = None
    checkin_date: date
    checkout_date: date
    num_adults: int = Field(1, ge=1)
    num_children: int = Field(0, ge=0)
    status: BookingStatus = BookingStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    source: str = "direct"
    notes: str | None = None
    allow_overlap: bool = False


class BookingStatusUpdate(BaseModel):
    status: BookingStatus
    allow_overlap: bool = False


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    property_id: int
    guest_name: str
    guest_email: str | None = None
    guest_phone: str | None = None
    checkin_date: date
    checkout_date: date
    num_adults: int
    num_children: int
    status: BookingStatus
    payment_status: PaymentStatus
    source: str
    double_booked: bool
    nights: int


# --- Tasks ---


class _TaskCreate(BaseModel):
    property_id: int
    start: datetime
    end: datetime
    all_day: bool = False
    staff_name: str | None = None
    notes: str | None = None
    allow_overlap: bool = False

    def span(self) -> tuple[date | datetime, date | datetime]:
        """Whole days when ``all_day`` is set."""
        if self.all_day:
            return self.start.date(), self.end.date()
        return self.start, self.end


class CleaningTaskCreate(_TaskCreate):
    title: str = "Cleaning"
    booking_id: int | None = None


class MaintenanceTaskCreate(_TaskCreate):
    title: str = Field(..., min_length=1, max_length=300)
    description: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    kind: MaintenanceKind = MaintenanceKind.MAINTENANCE
    cost: float | None = Field(None, ge=0)


class TaskUpdate(BaseModel):
    start: datetime | None = None
    end: datetime | None = None
    all_day: bool = False
    status: TaskStatus | None = None
    allow_overlap: bool = False

    def span(self) -> tuple[date | datetime, date | datetime] | None:
        if self.start is None or self.end is None:
            return None
        if self.all_day:
            return self.start.date(), self.end.date()
        return self.start, self.end


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: str
    property_id: int
    title: str
    start_at: datetime
    end_at: datetime
    all_day: bool
    staff_name: str | None = None
    status: TaskStatus
    notes: str | None = None
    booking_id: int | None = None
    description: str | None = None
    priority: TaskPriority | None = None
    task_kind: MaintenanceKind | None = None
    cost: float | None = None


# --- Conflicts and calendar ---


class ConflictOut(BaseModel):
    event_id: str
    kind: str
    record_id: int
    start: datetime
    end: datetime
    label: str

    @classmethod
    def of(cls, c: Commitment) -> ConflictOut:
        return cls(
            event_id=c.event_id,
            kind=c.kind,
            record_id=c.record_id,
            start=c.interval.start,
            end=c.interval.end,
            label=c.label,
        )


class ConflictCheckOut(BaseModel):
    start: datetime
    end: datetime
    has_conflict: bool
    conflicts: list[ConflictOut]

    @classmethod
    def of(cls, result: ConflictResult) -> ConflictCheckOut:
        return cls(
            start=result.proposed.start,
            end=result.proposed.end,
            has_conflict=result.has_conflict,
            conflicts=[ConflictOut.of(c) for c in result.conflicts],
        )


class AvailabilityOut(BaseModel):
    """Either the free nights from ``start`` or the verdict on one stay."""

    property_id: int
    start: date | None = None
    days: int | None = None
    available_dates: list[date] | None = None
    checkin_date: date | None = None
    checkout_date: date | None = None
    is_available: bool | None = None
    conflicts: list[ConflictOut] = []


class ScheduleOut(BaseModel):
    record: dict[str, Any]
    status: StatusReportOut
    overbooked: bool = False
    conflicts: list[ConflictOut] = []

    @classmethod
    def of(cls, result: ScheduleResult, record: BaseModel) -> ScheduleOut:
        conflicts = result.conflicts.conflicts if result.conflicts else ()
        return cls(
            record=record.model_dump(mode="json"),
            status=StatusReportOut.of(result.status),
            overbooked=result.overbooked,
            conflicts=[ConflictOut.of(c) for c in conflicts],
        )


_EVENT_BASE_FIELDS = ("event_id", "property_id", "property_name", "title", "start", "end", "all_day")


class CalendarEventOut(BaseModel):
    event_id: str
    event_type: str
    editable: bool
    property_id: int
    property_name: str
    title: str
    start: datetime
    end: datetime
    all_day: bool
    details: dict[str, Any]

    @classmethod
    def of(cls, evt: CalendarEvent) -> CalendarEventOut:
        fields = asdict(evt)
        base = {name: fields.pop(name) for name in _EVENT_BASE_FIELDS}
        return cls(event_type=evt.event_type.value, editable=evt.editable, details=fields, **base)
