"""FastAPI application exposing the availability, calendar and listing API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Iterator

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from hostdesk.config import settings
from hostdesk.database import get_session, init_db
from hostdesk.errors import InvalidOperation, NotFoundError, SchedulingConflict, ValidationError
from hostdesk.models.booking import BookingStatus
from hostdesk.intervals import Interval
from hostdesk.models.property import Property
from hostdesk.modules.alerts import OperatorAlerts
from hostdesk.modules.availability import AvailabilityEngine, ScheduleResult
from hostdesk.modules.calendar import CalendarAggregator, to_ical
from hostdesk.modules.listing import ListingController
from hostdesk.scheduler import create_scheduler
from hostdesk.schemas import (
    AvailabilityOut,
    BookingCreate,
    BookingOut,
    BookingStatusUpdate,
    CalendarEventOut,
    CleaningTaskCreate,
    ConflictCheckOut,
    ConflictOut,
    ListingOut,
    ListingUpdate,
    MaintenanceTaskCreate,
    PropertyCreate,
    PropertyDetail,
    PropertyOut,
    PropertyStatusUpdate,
    ScheduleOut,
    StatusReportOut,
    TaskOut,
    TaskUpdate,
)

logger = logging.getLogger(__name__)

operator_alerts = OperatorAlerts()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting HostDesk...")
    init_db()
    seed_properties_from_config()
    operator_alerts.setup_event_handlers()

    scheduler = None
    if settings.get("scheduler", {}).get("enabled", False):
        scheduler = create_scheduler()
        scheduler.start()
        logger.info("Scheduler started.")

    yield

    if scheduler is not None:
        scheduler.shutdown()
    logger.info("HostDesk shut down.")


app = FastAPI(title="HostDesk", lifespan=lifespan)


def seed_properties_from_config() -> None:
    """Seed properties from config.yaml if not already in DB."""
    session = get_session()
    try:
        for prop_cfg in settings.get("properties", []) or []:
            existing = session.scalars(
                select(Property).where(Property.name == prop_cfg["name"])
            ).first()
            if existing:
                continue
            prop = Property(
                name=prop_cfg["name"],
                location=prop_cfg.get("location", ""),
                daily_rate=Decimal(str(prop_cfg.get("daily_rate", 100))),
                bedrooms=prop_cfg.get("bedrooms", 1),
                bathrooms=prop_cfg.get("bathrooms", 1),
                max_guests=prop_cfg.get("max_guests", 4),
                checkin_time=prop_cfg.get("checkin_time", "15:00"),
                checkout_time=prop_cfg.get("checkout_time", "11:00"),
                auto_list_when_vacant=prop_cfg.get("auto_list_when_vacant", False),
                notes=prop_cfg.get("notes"),
            )
            session.add(prop)
            session.commit()
            logger.info("Seeded property: %s", prop.name)
    finally:
        session.close()


# --- Dependencies ---


def db_session() -> Iterator[Session]:
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def availability_engine(session: Session = Depends(db_session)) -> AvailabilityEngine:
    return AvailabilityEngine(session)


def listing_controller(session: Session = Depends(db_session)) -> ListingController:
    return ListingController(session)


# --- Error mapping ---


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"error": "validation_error", "detail": str(exc)})


@app.exception_handler(SchedulingConflict)
async def handle_scheduling_conflict(request: Request, exc: SchedulingConflict):
    return JSONResponse(status_code=409, content={
        "error": "scheduling_conflict",
        "detail": str(exc),
        "conflicts": [ConflictOut.of(c).model_dump(mode="json") for c in exc.conflicts],
    })


@app.exception_handler(InvalidOperation)
async def handle_invalid_operation(request: Request, exc: InvalidOperation):
    return JSONResponse(status_code=409, content={"error": "invalid_operation", "detail": str(exc)})


@app.exception_handler(NotFoundError)
async def handle_not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": "not_found", "detail": str(exc)})


# --- Properties ---


@app.post("/properties", status_code=201, response_model=PropertyOut)
def create_property(body: PropertyCreate, session: Session = Depends(db_session)):
    prop = Property(**body.model_dump(), listed_on=[])
    session.add(prop)
    session.commit()
    session.refresh(prop)
    logger.info("Created property %s (%s)", prop.id, prop.name)
    return prop


@app.get("/properties", response_model=list[PropertyOut])
def list_properties(session: Session = Depends(db_session)):
    return session.scalars(select(Property).order_by(Property.id)).all()


@app.get("/properties/{property_id}", response_model=PropertyDetail)
def get_property(property_id: int, engine: AvailabilityEngine = Depends(availability_engine)):
    report = engine.status_report(property_id)
    prop = engine.get_property(property_id)
    return PropertyDetail(property=PropertyOut.model_validate(prop), status=StatusReportOut.of(report))


@app.patch("/properties/{property_id}", response_model=PropertyDetail)
def update_property_status(
    property_id: int,
    body: PropertyStatusUpdate,
    engine: AvailabilityEngine = Depends(availability_engine),
):
    report = engine.apply_status_change(property_id, body.status)
    prop = engine.get_property(property_id)
    return PropertyDetail(property=PropertyOut.model_validate(prop), status=StatusReportOut.of(report))


@app.delete("/properties/{property_id}", status_code=204)
def delete_property(
    property_id: int,
    cascade: bool = False,
    engine: AvailabilityEngine = Depends(availability_engine),
):
    engine.delete_property(property_id, cascade=cascade)
    return Response(status_code=204)


@app.post("/status/refresh", response_model=list[StatusReportOut])
def refresh_statuses(engine: AvailabilityEngine = Depends(availability_engine)):
    return [StatusReportOut.of(r) for r in engine.refresh_all_statuses()]


# --- Calendar ---


def _calendar_events(
    session: Session,
    start: date | None,
    end: date | None,
    event_type: str | None,
    property_id: int | None,
) -> list[CalendarEventOut]:
    view = CalendarAggregator(session).events(
        start=start, end=end, property_id=property_id, event_type=event_type,
    )
    return [CalendarEventOut.of(evt) for evt in view]


@app.get("/calendar", response_model=list[CalendarEventOut])
def calendar(
    start: date | None = Query(None, alias="from"),
    end: date | None = Query(None, alias="to"),
    event_type: str | None = Query(None, alias="type"),
    property_id: int | None = None,
    session: Session = Depends(db_session),
):
    return _calendar_events(session, start, end, event_type, property_id)


@app.get("/properties/{property_id}/calendar", response_model=list[CalendarEventOut])
def property_calendar(
    property_id: int,
    start: date | None = Query(None, alias="from"),
    end: date | None = Query(None, alias="to"),
    event_type: str | None = Query(None, alias="type"),
    session: Session = Depends(db_session),
):
    if session.get(Property, property_id) is None:
        raise NotFoundError(f"Property {property_id} not found")
    return _calendar_events(session, start, end, event_type, property_id)


@app.get("/properties/{property_id}/calendar.ics")
def property_calendar_ics(
    property_id: int,
    start: date | None = Query(None, alias="from"),
    end: date | None = Query(None, alias="to"),
    session: Session = Depends(db_session),
):
    prop = session.get(Property, property_id)
    if prop is None:
        raise NotFoundError(f"Property {property_id} not found")
    view = CalendarAggregator(session).events(start=start, end=end, property_id=property_id)
    return Response(
        content=to_ical(view, calendar_name=prop.name),
        media_type="text/calendar",
        headers={"Content-Disposition": f"attachment; filename=property_{property_id}.ics"},
    )


@app.get("/properties/{property_id}/availability", response_model=AvailabilityOut)
def property_availability(
    property_id: int,
    checkin_date: date | None = None,
    checkout_date: date | None = None,
    start: date | None = Query(None, alias="from"),
    days: int = Query(90, ge=1, le=365),
    engine: AvailabilityEngine = Depends(availability_engine),
):
    if checkin_date is not None or checkout_date is not None:
        if checkin_date is None or checkout_date is None:
            raise ValidationError("Give both checkin_date and checkout_date, or neither")
        result = engine.stay_conflicts(property_id, checkin_date, checkout_date)
        return AvailabilityOut(
            property_id=property_id,
            checkin_date=checkin_date,
            checkout_date=checkout_date,
            is_available=not result,
            conflicts=[ConflictOut.of(c) for c in result.conflicts],
        )
    first = start or date.today()
    return AvailabilityOut(
        property_id=property_id,
        start=first,
        days=days,
        available_dates=engine.available_dates(property_id, first, days),
    )


@app.get("/properties/{property_id}/conflicts", response_model=ConflictCheckOut)
def check_conflicts(
    property_id: int,
    start: datetime,
    end: datetime,
    exclude: str | None = None,
    engine: AvailabilityEngine = Depends(availability_engine),
):
    proposed = Interval(start, end)
    return ConflictCheckOut.of(engine.check_conflict(property_id, proposed, excluding_event_id=exclude))


# --- Bookings ---


@app.get("/bookings", response_model=list[BookingOut])
def list_bookings(
    start: date | None = Query(None, alias="from"),
    end: date | None = Query(None, alias="to"),
    property_id: int | None = None,
    status: BookingStatus | None = None,
    engine: AvailabilityEngine = Depends(availability_engine),
):
    return engine.list_bookings(start=start, end=end, property_id=property_id, status=status)


@app.get("/bookings/{booking_id}", response_model=BookingOut)
def get_booking(booking_id: int, engine: AvailabilityEngine = Depends(availability_engine)):
    return engine.get_booking(booking_id)


@app.get("/properties/{property_id}/bookings", response_model=list[BookingOut])
def property_bookings(
    property_id: int,
    status: BookingStatus | None = None,
    engine: AvailabilityEngine = Depends(availability_engine),
):
    engine.get_property(property_id)
    return engine.list_bookings(property_id=property_id, status=status)


@app.post("/bookings", status_code=201, response_model=ScheduleOut)
def create_booking(body: BookingCreate, engine: AvailabilityEngine = Depends(availability_engine)):
    result = engine.create_booking(**body.model_dump())
    return ScheduleOut.of(result, BookingOut.model_validate(result.record))


@app.patch("/bookings/{booking_id}", response_model=ScheduleOut)
def update_booking_status(
    booking_id: int,
    body: BookingStatusUpdate,
    engine: AvailabilityEngine = Depends(availability_engine),
):
    result = engine.set_booking_status(booking_id, body.status, allow_overlap=body.allow_overlap)
    return ScheduleOut.of(result, BookingOut.model_validate(result.record))


# --- Tasks ---


@app.post("/cleaning-tasks", status_code=201, response_model=ScheduleOut)
def create_cleaning_task(body: CleaningTaskCreate, engine: AvailabilityEngine = Depends(availability_engine)):
    start, end = body.span()
    result = engine.create_cleaning_task(
        property_id=body.property_id,
        start=start,
        end=end,
        title=body.title,
        staff_name=body.staff_name,
        notes=body.notes,
        booking_id=body.booking_id,
        allow_overlap=body.allow_overlap,
    )
    return ScheduleOut.of(result, TaskOut.model_validate(result.record))


@app.post("/maintenance-tasks", status_code=201, response_model=ScheduleOut)
def create_maintenance_task(body: MaintenanceTaskCreate, engine: AvailabilityEngine = Depends(availability_engine)):
    start, end = body.span()
    result = engine.create_maintenance_task(
        property_id=body.property_id,
        title=body.title,
        start=start,
        end=end,
        priority=body.priority,
        kind=body.kind,
        description=body.description,
        staff_name=body.staff_name,
        notes=body.notes,
        cost=body.cost,
        allow_overlap=body.allow_overlap,
    )
    return ScheduleOut.of(result, TaskOut.model_validate(result.record))


def _update_task(engine: AvailabilityEngine, kind: str, task_id: int, body: TaskUpdate) -> ScheduleOut:
    span = body.span()
    if span is None and body.status is None:
        raise ValidationError("Nothing to update: give start and end, a status, or both")
    result = None
    if span is not None:
        result = engine.reschedule_task(kind, task_id, *span, allow_overlap=body.allow_overlap)
    if body.status is not None:
        status_result = engine.set_task_status(kind, task_id, body.status)
        if result is None:
            result = status_result
        else:
            result = ScheduleResult(
                record=status_result.record, status=status_result.status, conflicts=result.conflicts,
            )
    return ScheduleOut.of(result, TaskOut.model_validate(result.record))


@app.patch("/cleaning-tasks/{task_id}", response_model=ScheduleOut)
def update_cleaning_task(task_id: int, body: TaskUpdate, engine: AvailabilityEngine = Depends(availability_engine)):
    return _update_task(engine, "cleaning", task_id, body)


@app.patch("/maintenance-tasks/{task_id}", response_model=ScheduleOut)
def update_maintenance_task(task_id: int, body: TaskUpdate, engine: AvailabilityEngine = Depends(availability_engine)):
    return _update_task(engine, "maintenance", task_id, body)


# --- Listing ---


@app.get("/properties/{property_id}/listing", response_model=ListingOut)
def get_listing(property_id: int, listing: ListingController = Depends(listing_controller)):
    return ListingOut.of(listing.state(property_id))


@app.patch("/properties/{property_id}/listing", response_model=ListingOut)
def update_listing(
    property_id: int,
    body: ListingUpdate,
    listing: ListingController = Depends(listing_controller),
):
    state = listing.update(
        property_id,
        is_actively_listed=body.is_actively_listed,
        listed_on=body.listed_on,
        auto_list_when_vacant=body.auto_list_when_vacant,
    )
    return ListingOut.of(state)


@app.post("/properties/{property_id}/listing/platforms/{platform}", response_model=ListingOut)
def toggle_platform(property_id: int, platform: str, listing: ListingController = Depends(listing_controller)):
    return ListingOut.of(listing.toggle_platform(property_id, platform))


@app.post("/properties/{property_id}/listing/select-all", response_model=ListingOut)
def select_all_platforms(property_id: int, listing: ListingController = Depends(listing_controller)):
    return ListingOut.of(listing.select_all_platforms(property_id))


@app.post("/properties/{property_id}/listing/deselect-all", response_model=ListingOut)
def deselect_all_platforms(property_id: int, listing: ListingController = Depends(listing_controller)):
    return ListingOut.of(listing.deselect_all_platforms(property_id))


# --- Alerts ---


@app.get("/alerts")
def list_alerts(property_id: int | None = None):
    return [
        {
            "kind": a.kind,
            "property_id": a.property_id,
            "data": a.data,
            "raised_at": a.raised_at.isoformat(),
        }
        for a in operator_alerts.recent(property_id)
    ]


def main() -> None:
    """Entry point for running the app."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    init_db()
    logger.info("Database initialized.")

    uvicorn.run(
        "hostdesk.app:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )


if __name__ == "__main__":
    main()
