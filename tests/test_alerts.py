"""Tests for operator alerts and the periodic status refresh."""

from datetime import date
from unittest.mock import patch

from sqlalchemy.orm import Session

from hostdesk.events import Event, EventBus, EventType
from hostdesk.models.booking import Booking
from hostdesk.models.property import Property
from hostdesk.modules.alerts import OperatorAlerts
from hostdesk.modules.availability import AvailabilityEngine
from hostdesk.scheduler import create_scheduler, refresh_statuses


def test_alerts_record_divergences_and_double_bookings(event_bus: EventBus):
    alerts = OperatorAlerts()
    alerts.setup_event_handlers(event_bus)

    event_bus.publish(Event(EventType.STATUS_DIVERGENCE, {"property_id": 1, "stored": "Renovation"}))
    event_bus.publish(Event(EventType.DOUBLE_BOOKING_FLAGGED, {"property_id": 2, "booking_id": 7}))
    event_bus.publish(Event(EventType.BOOKING_CREATED, {"property_id": 1, "booking_id": 8}))

    assert [a.kind for a in alerts.recent()] == ["double_booking_flagged", "status_divergence"]
    assert [a.data["stored"] for a in alerts.recent(property_id=1)] == ["Renovation"]


def test_setup_is_idempotent(event_bus: EventBus):
    alerts = OperatorAlerts()
    alerts.setup_event_handlers(event_bus)
    alerts.setup_event_handlers(event_bus)

    event_bus.publish(Event(EventType.STATUS_DIVERGENCE, {"property_id": 1}))

    assert len(alerts.recent()) == 1


def test_alert_buffer_is_bounded(event_bus: EventBus):
    alerts = OperatorAlerts(maxlen=3)
    alerts.setup_event_handlers(event_bus)
    for booking_id in range(5):
        event_bus.publish(Event(EventType.DOUBLE_BOOKING_FLAGGED, {"property_id": 1, "booking_id": booking_id}))

    assert [a.data["booking_id"] for a in alerts.recent()] == [4, 3, 2]
    alerts.clear()
    assert alerts.recent() == []


def test_engine_divergence_reaches_alerts(engine: AvailabilityEngine, event_bus: EventBus, sample_property: Property):
    alerts = OperatorAlerts()
    alerts.setup_event_handlers(event_bus)

    engine.apply_status_change(sample_property.id, "Maintenance")

    (alert,) = alerts.recent()
    assert alert.property_id == sample_property.id
    assert alert.data["derived"] == "Available"


def test_scheduler_has_status_refresh_job():
    scheduler = create_scheduler()
    jobs = scheduler.get_jobs()
    assert [job.id for job in jobs] == ["status_refresh"]


def test_refresh_statuses_job_frees_finished_stays(db_session: Session, sample_property: Property):
    db_session.add(Booking(
        property_id=sample_property.id,
        guest_name="Past Guest",
        checkin_date=date(2020, 1, 1),
        checkout_date=date(2020, 1, 5),
        status="confirmed",
    ))
    sample_property.status = "Occupied"
    db_session.commit()
    property_id = sample_property.id

    with patch("hostdesk.scheduler.get_session", return_value=db_session):
        refresh_statuses()

    # The job closes its session, detaching everything loaded through it.
    prop = db_session.get(Property, property_id)
    assert prop.status == "Available"
    assert prop.is_actively_listed is True


def test_refresh_statuses_job_swallows_engine_errors(caplog, db_session: Session):
    with (
        patch("hostdesk.scheduler.get_session", return_value=db_session),
        patch.object(AvailabilityEngine, "refresh_all_statuses", side_effect=RuntimeError("boom")),
    ):
        refresh_statuses()

    assert "Status refresh failed" in caplog.text
