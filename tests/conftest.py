"""Shared test fixtures."""

from __future__ import annotations

import os
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Set test environment before importing app modules
os.environ["DATABASE_URL"] = "sqlite://"  # In-memory DB for tests

from hostdesk.database import Base
from hostdesk.events import EventBus
from hostdesk.models.booking import Booking
from hostdesk.models.property import Property
from hostdesk.modules.availability import AvailabilityEngine
from hostdesk.modules.listing import ListingConfig, ListingController

# Import all models to register them
import hostdesk.models.task  # noqa: F401

ALL_PLATFORMS = ("Airbnb", "Booking.com", "VRBO", "Expedia", "TripAdvisor", "Agoda")


class FakeClock:
    """Settable stand-in for ``datetime.now``."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    engine = create_engine("sqlite://", echo=False)
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine)
    session = session_factory()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def sample_property(db_session: Session) -> Property:
    """An available property that auto-lists when it becomes vacant."""
    prop = Property(
        name="Test Loft",
        location="123 Test St",
        daily_rate=Decimal("120.00"),
        bedrooms=1,
        bathrooms=1,
        max_guests=4,
        checkin_time="15:00",
        checkout_time="11:00",
        auto_list_when_vacant=True,
        listed_on=[],
    )
    db_session.add(prop)
    db_session.commit()
    return prop


@pytest.fixture
def sample_booking(db_session: Session, sample_property: Property) -> Booking:
    """A confirmed stay from Feb 1 to Feb 5."""
    booking = Booking(
        property_id=sample_property.id,
        guest_name="John Doe",
        checkin_date=date(2026, 2, 1),
        checkout_date=date(2026, 2, 5),
        num_adults=2,
        status="confirmed",
    )
    db_session.add(booking)
    db_session.commit()
    return booking


@pytest.fixture
def event_bus():
    """Create a fresh event bus for each test."""
    return EventBus()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 4, 25, 12, 0))


@pytest.fixture
def listing_config() -> ListingConfig:
    return ListingConfig(platforms=ALL_PLATFORMS)


@pytest.fixture
def listing(db_session: Session, listing_config: ListingConfig, event_bus: EventBus) -> ListingController:
    return ListingController(db_session, config=listing_config, bus=event_bus)


@pytest.fixture
def engine(db_session: Session, listing: ListingController, event_bus: EventBus, clock: FakeClock) -> AvailabilityEngine:
    return AvailabilityEngine(db_session, listing=listing, bus=event_bus, clock=clock)
