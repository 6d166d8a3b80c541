"""Conflict detection, status derivation and the booking/task writes that go through them."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Iterator, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hostdesk.errors import (
    IntegrityWarning,
    InvalidOperation,
    NotFoundError,
    SchedulingConflict,
    ValidationError,
)
from hostdesk.events import Event, EventBus, EventType, event_bus
from hostdesk.intervals import Commitment, ConflictResult, Interval, as_instant, find_overlaps
from hostdesk.locks import lock_property, property_locks
from hostdesk.models.booking import (
    BOOKING_TRANSITIONS,
    OCCUPYING_STATUSES,
    Booking,
    BookingStatus,
    PaymentStatus,
)
from hostdesk.models.property import Property, PropertyStatus
from hostdesk.models.task import (
    ACTIVE_TASK_STATUSES,
    TASK_TRANSITIONS,
    CleaningTask,
    MaintenanceKind,
    MaintenanceTask,
    TaskPriority,
    TaskStatus,
)
from hostdesk.modules.listing import ListingController

logger = logging.getLogger(__name__)

Task = Union[CleaningTask, MaintenanceTask]

MAX_AVAILABILITY_DAYS = 365

TASK_MODELS: dict[str, type] = {
    "cleaning": CleaningTask,
    "maintenance": MaintenanceTask,
}


@dataclass(frozen=True)
class StatusReport:
    """Stored versus derived status of one property at one instant."""

    property_id: int
    stored: PropertyStatus
    derived: PropertyStatus
    as_of: datetime
    warning: IntegrityWarning | None = None
    auto_listed: bool = False

    @property
    def consistent(self) -> bool:
        return self.warning is None


@dataclass(frozen=True)
class ScheduleResult:
    """Outcome of a booking or task write."""

    record: Any
    status: StatusReport
    conflicts: ConflictResult | None = None

    @property
    def overbooked(self) -> bool:
        return bool(self.conflicts)


def _parse_enum(enum_cls, value, what: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {what} {value!r}; expected one of: {allowed}") from None


def _task_interval(start: date | datetime, end: date | datetime) -> tuple[Interval, bool]:
    """Dates mean whole days; datetimes are taken as given."""
    all_day = not isinstance(start, datetime) and not isinstance(end, datetime)
    return Interval(as_instant(start, time.min), as_instant(end, time.min)), all_day


class AvailabilityEngine:
    """Validates bookings and tasks against a property's calendar and keeps its status in step.

    Every write for a property runs under that property's lock and a row lock
    on the property, so the conflict check and the insert it guards cannot
    interleave with another writer. Events are published only after commit.
    """

    def __init__(
        self,
        session: Session,
        listing: ListingController | None = None,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session = session
        self._bus = bus or event_bus
        self.listing = listing or ListingController(session, bus=self._bus)
        self._clock = clock or datetime.now
        self._outbox: list[Event] = []

    # --- Conflict detection ---

    def check_conflict(
        self,
        property_id: int,
        proposed: Interval,
        excluding_event_id: str | None = None,
    ) -> ConflictResult:
        """List the bookings and active tasks overlapping ``proposed``.

        Never rejects anything itself; the caller decides what a conflict means.
        """
        prop = self.get_property(property_id)
        return find_overlaps(proposed, self._commitments(prop), excluding_event_id)

    def _commitments(self, prop: Property) -> Iterator[Commitment]:
        bookings = self._session.scalars(
            select(Booking).where(
                Booking.property_id == prop.id,
                Booking.status != BookingStatus.CANCELLED.value,
            )
        )
        for b in bookings:
            yield Commitment(
                kind="booking",
                record_id=b.id,
                interval=Interval.for_stay(b.checkin_date, b.checkout_date, prop.checkin_at, prop.checkout_at),
                label=f"{b.guest_name} ({b.status})",
            )
        for model in (CleaningTask, MaintenanceTask):
            tasks = self._session.scalars(
                select(model).where(
                    model.property_id == prop.id,
                    model.status.in_(ACTIVE_TASK_STATUSES),
                )
            )
            for t in tasks:
                yield Commitment(
                    kind=model.kind,
                    record_id=t.id,
                    interval=Interval(t.start_at, t.end_at),
                    label=t.title,
                )

    # --- Status derivation ---

    def derive_status(self, property_id: int, as_of: date | datetime | None = None) -> PropertyStatus:
        """Status implied by the calendar at ``as_of``.

        A bare date is evaluated at the property's check-in time, i.e. the
        status for that night.
        """
        prop = self.get_property(property_id)
        return self._derive(prop, self._instant(prop, as_of))

    def _derive(self, prop: Property, instant: datetime) -> PropertyStatus:
        day = instant.date()
        bookings = self._session.scalars(
            select(Booking).where(
                Booking.property_id == prop.id,
                Booking.status.in_(OCCUPYING_STATUSES),
                Booking.checkin_date <= day,
                Booking.checkout_date >= day,
            )
        )
        for b in bookings:
            if Interval.for_stay(b.checkin_date, b.checkout_date, prop.checkin_at, prop.checkout_at).contains(instant):
                return PropertyStatus.OCCUPIED

        tasks = self._session.scalars(
            select(MaintenanceTask).where(
                MaintenanceTask.property_id == prop.id,
                MaintenanceTask.status.in_(ACTIVE_TASK_STATUSES),
                MaintenanceTask.start_at <= instant,
                MaintenanceTask.end_at > instant,
            )
        ).all()
        if any(t.is_renovation for t in tasks):
            return PropertyStatus.RENOVATION
        if tasks:
            return PropertyStatus.MAINTENANCE
        return PropertyStatus.AVAILABLE

    def status_report(self, property_id: int, as_of: date | datetime | None = None) -> StatusReport:
        """Reconcile the stored status with the derived one.

        A mismatch is logged and published as a divergence; it never raises.
        """
        prop = self.get_property(property_id)
        return self._report(prop, self._instant(prop, as_of))

    def _report(self, prop: Property, instant: datetime, auto_listed: bool = False) -> StatusReport:
        stored = PropertyStatus(prop.status)
        derived = self._derive(prop, instant)
        warning = None
        if stored is not derived:
            warning = IntegrityWarning(property_id=prop.id, stored=stored.value, derived=derived.value)
            logger.warning(warning.message)
            self._bus.publish(Event(
                event_type=EventType.STATUS_DIVERGENCE,
                data={"property_id": prop.id, "stored": stored.value, "derived": derived.value},
            ))
        return StatusReport(
            property_id=prop.id,
            stored=stored,
            derived=derived,
            as_of=instant,
            warning=warning,
            auto_listed=auto_listed,
        )

    # --- Status transitions ---

    def apply_status_change(self, property_id: int, new_status: PropertyStatus | str) -> StatusReport:
        """Manual status override.

        Moving into Available fires the vacancy hook in the same transaction.
        The result carries an integrity warning when the calendar disagrees.
        """
        status = _parse_enum(PropertyStatus, new_status, "property status")
        with self._writing(property_id) as prop:
            auto_listed = self._transition(prop, status, reason="manual")
        return self._report(prop, self._instant(prop, None), auto_listed=auto_listed)

    def refresh_status(self, property_id: int, as_of: date | datetime | None = None) -> StatusReport:
        """Write the derived status back to the property."""
        with self._writing(property_id) as prop:
            report = self._refresh(prop, as_of)
        return report

    def refresh_all_statuses(self, as_of: date | datetime | None = None) -> list[StatusReport]:
        ids = self._session.scalars(select(Property.id).order_by(Property.id)).all()
        reports = [self.refresh_status(pid, as_of) for pid in ids]
        changed = sum(1 for r in reports if r.auto_listed)
        logger.info("Refreshed status of %d properties (%d auto-listed)", len(reports), changed)
        return reports

    def _refresh(self, prop: Property, as_of: date | datetime | None = None) -> StatusReport:
        instant = self._instant(prop, as_of)
        derived = self._derive(prop, instant)
        auto_listed = self._transition(prop, derived, reason="calendar")
        return StatusReport(
            property_id=prop.id,
            stored=derived,
            derived=derived,
            as_of=instant,
            auto_listed=auto_listed,
        )

    def _transition(self, prop: Property, new_status: PropertyStatus, reason: str) -> bool:
        """Store a new status; returns whether the vacancy hook listed the property."""
        old = prop.status
        if old == new_status.value:
            return False
        prop.status = new_status.value
        logger.info("Property %s: %s -> %s (%s)", prop.id, old, new_status.value, reason)
        self._queue(EventType.PROPERTY_STATUS_CHANGED, {
            "property_id": prop.id, "old": old, "new": new_status.value, "reason": reason,
        })
        if new_status is not PropertyStatus.AVAILABLE:
            return False
        if not self.listing.on_vacancy(prop):
            return False
        self._queue(EventType.LISTING_AUTO_ACTIVATED, {
            "property_id": prop.id, "listed_on": list(prop.listed_on),
        })
        return True

    # --- Bookings ---

    def create_booking(
        self,
        property_id: int,
        guest_name: str,
        checkin_date: date,
        checkout_date: date,
        num_adults: int = 1,
        num_children: int = 0,
        guest_email: str | None = None,
        guest_phone: str | None = None,
        status: BookingStatus | str = BookingStatus.PENDING,
        payment_status: PaymentStatus | str = PaymentStatus.UNPAID,
        source: str = "direct",
        notes: str | None = None,
        allow_overlap: bool = False,
    ) -> ScheduleResult:
        """Create a booking unless it overlaps an existing commitment.

        With ``allow_overlap`` the booking is kept and flagged as double-booked
        for manual resolution.
        """
        if not guest_name or not guest_name.strip():
            raise ValidationError("Guest name is required")
        initial = _parse_enum(BookingStatus, status, "booking status")
        if initial not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise ValidationError(f"A new booking cannot start as {initial.value}")
        payment = _parse_enum(PaymentStatus, payment_status, "payment status")
        if num_adults < 1:
            raise ValidationError("A booking needs at least one adult")
        if num_children < 0:
            raise ValidationError("Number of children cannot be negative")

        with self._writing(property_id) as prop:
            guests = num_adults + num_children
            if guests > prop.max_guests:
                raise ValidationError(
                    f"{guests} guests exceed the capacity of {prop.name} ({prop.max_guests})"
                )
            stay = Interval.for_stay(checkin_date, checkout_date, prop.checkin_at, prop.checkout_at)
            conflicts = find_overlaps(stay, self._commitments(prop))
            if conflicts and not allow_overlap:
                raise SchedulingConflict(conflicts)

            booking = Booking(
                property_id=prop.id,
                guest_name=guest_name.strip(),
                guest_email=guest_email,
                guest_phone=guest_phone,
                checkin_date=checkin_date,
                checkout_date=checkout_date,
                num_adults=num_adults,
                num_children=num_children,
                status=initial.value,
                payment_status=payment.value,
                source=source,
                notes=notes,
                double_booked=bool(conflicts),
            )
            self._session.add(booking)
            self._session.flush()

            self._queue(EventType.BOOKING_CREATED, {"booking_id": booking.id, "property_id": prop.id})
            if conflicts:
                self._flag_double_booking(booking, conflicts)
            report = self._refresh(prop)

        logger.info("Created booking %s for property %s: %s..%s", booking.id, property_id, checkin_date, checkout_date)
        return ScheduleResult(record=booking, status=report, conflicts=conflicts)

    def set_booking_status(
        self,
        booking_id: int,
        status: BookingStatus | str,
        allow_overlap: bool = False,
    ) -> ScheduleResult:
        """Advance a booking through pending -> confirmed -> completed, or cancel it."""
        new_status = _parse_enum(BookingStatus, status, "booking status")
        booking = self._get(Booking, booking_id)

        with self._writing(booking.property_id) as prop:
            old = booking.status
            if old == new_status.value:
                return ScheduleResult(record=booking, status=self._refresh(prop))
            if new_status.value not in BOOKING_TRANSITIONS[old]:
                raise InvalidOperation(f"Booking {booking.id} cannot go from {old} to {new_status.value}")

            conflicts = None
            if new_status is BookingStatus.CONFIRMED:
                stay = Interval.for_stay(booking.checkin_date, booking.checkout_date, prop.checkin_at, prop.checkout_at)
                conflicts = find_overlaps(stay, self._commitments(prop), excluding_event_id=booking.event_id)
                if conflicts and not allow_overlap:
                    raise SchedulingConflict(conflicts)
                if conflicts:
                    booking.double_booked = True
                    self._flag_double_booking(booking, conflicts)

            booking.status = new_status.value
            if new_status is BookingStatus.CANCELLED:
                self._cancel_turnover_cleanings(booking)
                self._queue(EventType.BOOKING_CANCELLED, {"booking_id": booking.id, "property_id": prop.id})
            self._queue(EventType.BOOKING_STATUS_CHANGED, {
                "booking_id": booking.id, "property_id": prop.id, "old": old, "new": new_status.value,
            })
            report = self._refresh(prop)

        logger.info("Booking %s: %s -> %s", booking.id, old, new_status.value)
        return ScheduleResult(record=booking, status=report, conflicts=conflicts)

    def confirm_booking(self, booking_id: int, allow_overlap: bool = False) -> ScheduleResult:
        return self.set_booking_status(booking_id, BookingStatus.CONFIRMED, allow_overlap=allow_overlap)

    def cancel_booking(self, booking_id: int) -> ScheduleResult:
        return self.set_booking_status(booking_id, BookingStatus.CANCELLED)

    def complete_booking(self, booking_id: int) -> ScheduleResult:
        return self.set_booking_status(booking_id, BookingStatus.COMPLETED)

    def get_booking(self, booking_id: int) -> Booking:
        return self._get(Booking, booking_id)

    def list_bookings(
        self,
        start: date | None = None,
        end: date | None = None,
        property_id: int | None = None,
        status: BookingStatus | str | None = None,
    ) -> list[Booking]:
        """Bookings whose stay lies within ``[start, end]``, latest check-in first."""
        if start is not None and end is not None and end < start:
            raise ValidationError(f"End date {end} is before start date {start}")
        stmt = select(Booking).order_by(Booking.checkin_date.desc(), Booking.id.desc())
        if property_id is not None:
            stmt = stmt.where(Booking.property_id == property_id)
        if status is not None:
            wanted = _parse_enum(BookingStatus, status, "booking status")
            stmt = stmt.where(Booking.status == wanted.value)
        if start is not None:
            stmt = stmt.where(Booking.checkin_date >= start)
        if end is not None:
            stmt = stmt.where(Booking.checkout_date <= end)
        return list(self._session.scalars(stmt))

    def _cancel_turnover_cleanings(self, booking: Booking) -> None:
        tasks = self._session.scalars(
            select(CleaningTask).where(
                CleaningTask.booking_id == booking.id,
                CleaningTask.status.in_(ACTIVE_TASK_STATUSES),
            )
        ).all()
        for task in tasks:
            task.status = TaskStatus.CANCELLED.value
        if tasks:
            logger.info("Cancelled %d cleaning tasks for booking %s", len(tasks), booking.id)

    def _flag_double_booking(self, booking: Booking, conflicts: ConflictResult) -> None:
        logger.warning("Booking %s overlaps %s; flagged as double-booked", booking.id, conflicts.event_ids)
        self._queue(EventType.DOUBLE_BOOKING_FLAGGED, {
            "booking_id": booking.id,
            "property_id": booking.property_id,
            "conflicts": conflicts.event_ids,
        })

    # --- Tasks ---

    def create_cleaning_task(
        self,
        property_id: int,
        start: date | datetime,
        end: date | datetime,
        title: str = "Cleaning",
        staff_name: str | None = None,
        notes: str | None = None,
        booking_id: int | None = None,
        allow_overlap: bool = False,
    ) -> ScheduleResult:
        interval, all_day = _task_interval(start, end)

        def build(prop: Property) -> CleaningTask:
            if booking_id is not None:
                booking = self._get(Booking, booking_id)
                if booking.property_id != prop.id:
                    raise ValidationError(f"Booking {booking_id} belongs to another property")
            return CleaningTask(
                property_id=prop.id,
                booking_id=booking_id,
                title=title or "Cleaning",
                start_at=interval.start,
                end_at=interval.end,
                all_day=all_day,
                staff_name=staff_name,
                notes=notes,
            )

        return self._schedule_task(property_id, interval, build, allow_overlap)

    def create_maintenance_task(
        self,
        property_id: int,
        title: str,
        start: date | datetime,
        end: date | datetime,
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        kind: MaintenanceKind | str = MaintenanceKind.MAINTENANCE,
        description: str | None = None,
        staff_name: str | None = None,
        notes: str | None = None,
        cost: float | None = None,
        allow_overlap: bool = False,
    ) -> ScheduleResult:
        if not title or not title.strip():
            raise ValidationError("Maintenance task needs a title")
        level = _parse_enum(TaskPriority, priority, "priority")
        task_kind = _parse_enum(MaintenanceKind, kind, "maintenance kind")
        if cost is not None and cost < 0:
            raise ValidationError("Cost cannot be negative")
        interval, all_day = _task_interval(start, end)

        def build(prop: Property) -> MaintenanceTask:
            return MaintenanceTask(
                property_id=prop.id,
                title=title.strip(),
                description=description,
                start_at=interval.start,
                end_at=interval.end,
                all_day=all_day,
                staff_name=staff_name,
                priority=level.value,
                task_kind=task_kind.value,
                cost=cost,
                notes=notes,
            )

        return self._schedule_task(property_id, interval, build, allow_overlap)

    def _schedule_task(
        self,
        property_id: int,
        interval: Interval,
        build: Callable[[Property], Task],
        allow_overlap: bool,
    ) -> ScheduleResult:
        with self._writing(property_id) as prop:
            conflicts = find_overlaps(interval, self._commitments(prop))
            if conflicts and not allow_overlap:
                raise SchedulingConflict(conflicts)
            task = build(prop)
            self._session.add(task)
            self._session.flush()
            self._queue(EventType.TASK_SCHEDULED, {
                "task_id": task.id, "kind": task.kind, "property_id": prop.id,
                "conflicts": conflicts.event_ids,
            })
            report = self._refresh(prop)

        logger.info("Scheduled %s task %s on property %s %s", task.kind, task.id, property_id, interval)
        return ScheduleResult(record=task, status=report, conflicts=conflicts)

    def reschedule_task(
        self,
        kind: str,
        task_id: int,
        start: date | datetime,
        end: date | datetime,
        allow_overlap: bool = False,
    ) -> ScheduleResult:
        """Move an active task; its own slot is ignored by the conflict check."""
        task = self._get_task(kind, task_id)
        interval, all_day = _task_interval(start, end)

        with self._writing(task.property_id) as prop:
            if not task.is_active:
                raise InvalidOperation(f"Cannot reschedule {task.kind} task {task.id}: it is {task.status}")
            conflicts = find_overlaps(interval, self._commitments(prop), excluding_event_id=task.event_id)
            if conflicts and not allow_overlap:
                raise SchedulingConflict(conflicts)
            task.start_at = interval.start
            task.end_at = interval.end
            task.all_day = all_day
            self._queue(EventType.TASK_SCHEDULED, {
                "task_id": task.id, "kind": task.kind, "property_id": prop.id,
                "conflicts": conflicts.event_ids,
            })
            report = self._refresh(prop)

        return ScheduleResult(record=task, status=report, conflicts=conflicts)

    def set_task_status(self, kind: str, task_id: int, status: TaskStatus | str) -> ScheduleResult:
        new_status = _parse_enum(TaskStatus, status, "task status")
        task = self._get_task(kind, task_id)

        with self._writing(task.property_id) as prop:
            old = task.status
            if old != new_status.value:
                if new_status.value not in TASK_TRANSITIONS[old]:
                    raise InvalidOperation(
                        f"{task.kind.capitalize()} task {task.id} cannot go from {old} to {new_status.value}"
                    )
                task.status = new_status.value
                if new_status is TaskStatus.COMPLETED:
                    task.completed_at = datetime.now(timezone.utc)
                self._queue(EventType.TASK_STATUS_CHANGED, {
                    "task_id": task.id, "kind": task.kind, "property_id": prop.id,
                    "old": old, "new": new_status.value,
                })
            report = self._refresh(prop)

        return ScheduleResult(record=task, status=report)

    # --- Availability ---

    def stay_conflicts(self, property_id: int, checkin_date: date, checkout_date: date) -> ConflictResult:
        """What a stay on these dates would collide with; empty when it is bookable."""
        prop = self.get_property(property_id)
        stay = Interval.for_stay(checkin_date, checkout_date, prop.checkin_at, prop.checkout_at)
        return find_overlaps(stay, self._commitments(prop))

    def available_dates(
        self,
        property_id: int,
        start: date | None = None,
        days: int = MAX_AVAILABILITY_DAYS,
    ) -> list[date]:
        """Nights from ``start`` on which a one-night stay would conflict with nothing.

        ``days`` nights are scanned. Cleaning slots between check-out and
        check-in time do not block a night; tasks running through it do.
        """
        if not 1 <= days <= MAX_AVAILABILITY_DAYS:
            raise ValidationError(f"days must be between 1 and {MAX_AVAILABILITY_DAYS}")
        prop = self.get_property(property_id)
        first = start or self._clock().date()
        commitments = list(self._commitments(prop))
        free = []
        for offset in range(days):
            night = first + timedelta(days=offset)
            stay = Interval.for_stay(night, night + timedelta(days=1), prop.checkin_at, prop.checkout_at)
            if not any(c.interval.overlaps(stay) for c in commitments):
                free.append(night)
        return free

    # --- Properties ---

    def get_property(self, property_id: int) -> Property:
        return self._get(Property, property_id)

    def delete_property(self, property_id: int, cascade: bool = False) -> None:
        """Delete a property; refused while bookings or tasks reference it unless ``cascade``."""
        with self._writing(property_id) as prop:
            counts = {
                model.__tablename__: self._session.scalar(
                    select(func.count()).select_from(model).where(model.property_id == prop.id)
                )
                for model in (Booking, CleaningTask, MaintenanceTask)
            }
            referenced = {name: n for name, n in counts.items() if n}
            if referenced and not cascade:
                detail = ", ".join(f"{n} {name}" for name, n in referenced.items())
                raise InvalidOperation(f"Property {prop.id} is still referenced by {detail}")
            # Tasks first: cleaning tasks reference bookings.
            for model in (CleaningTask, MaintenanceTask, Booking):
                for record in self._session.scalars(select(model).where(model.property_id == prop.id)):
                    self._session.delete(record)
            self._session.flush()
            self._session.delete(prop)
        logger.info("Deleted property %s (cascade=%s)", property_id, cascade)

    # --- Internals ---

    @contextmanager
    def _writing(self, property_id: int) -> Iterator[Property]:
        """One locked read/compute/write unit for a property."""
        with property_locks.hold(property_id):
            try:
                prop = lock_property(self._session, property_id)
                yield prop
                self._session.commit()
            except Exception:
                self._session.rollback()
                self._outbox.clear()
                raise
        self._flush_events()

    def _queue(self, event_type: EventType, data: dict[str, Any]) -> None:
        self._outbox.append(Event(event_type=event_type, data=data))

    def _flush_events(self) -> None:
        pending, self._outbox = self._outbox, []
        for event in pending:
            self._bus.publish(event)

    def _instant(self, prop: Property, as_of: date | datetime | None) -> datetime:
        if as_of is None:
            as_of = self._clock()
        return as_instant(as_of, prop.checkin_at)

    def _get(self, model, record_id: int):
        record = self._session.get(model, record_id)
        if record is None:
            raise NotFoundError(f"{model.__name__} {record_id} not found")
        return record

    def _get_task(self, kind: str, task_id: int) -> Task:
        model = TASK_MODELS.get(kind)
        if model is None:
            raise ValidationError(f"Unknown task kind {kind!r}")
        return self._get(model, task_id)
