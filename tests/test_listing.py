"""Tests for the multi-channel listing controller."""

from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from hostdesk.errors import InvalidOperation, NotFoundError, ValidationError
from hostdesk.events import EventBus, EventType
from hostdesk.models.property import Property
from hostdesk.modules.listing import ListingConfig, ListingController

from conftest import ALL_PLATFORMS


@pytest.fixture
def unlisted_property(db_session: Session) -> Property:
    prop = Property(name="Quiet Cabin", daily_rate=Decimal("90.00"), listed_on=[])
    db_session.add(prop)
    db_session.commit()
    return prop


def _assert_invariant(prop: Property) -> None:
    assert not prop.listed_on or prop.is_actively_listed


def test_toggle_platform_on_inactive_listing_is_rejected(
    db_session: Session, listing: ListingController, unlisted_property: Property,
):
    with pytest.raises(InvalidOperation):
        listing.toggle_platform(unlisted_property.id, "Airbnb")

    db_session.refresh(unlisted_property)
    assert unlisted_property.listed_on == []
    assert unlisted_property.is_actively_listed is False


def test_toggle_platform_adds_and_removes(listing: ListingController, unlisted_property: Property):
    listing.set_active(unlisted_property.id, True)

    state = listing.toggle_platform(unlisted_property.id, "VRBO")
    assert state.listed_on == ("VRBO",)

    state = listing.toggle_platform(unlisted_property.id, "Airbnb")
    assert state.listed_on == ("Airbnb", "VRBO")  # config order

    state = listing.toggle_platform(unlisted_property.id, "VRBO")
    assert state.listed_on == ("Airbnb",)


def test_toggle_unknown_platform_is_a_validation_error(
    db_session: Session, listing: ListingController, unlisted_property: Property,
):
    listing.set_active(unlisted_property.id, True)
    with pytest.raises(ValidationError):
        listing.toggle_platform(unlisted_property.id, "Craigslist")
    db_session.refresh(unlisted_property)
    assert unlisted_property.listed_on == []


def test_deactivating_clears_platforms(db_session: Session, listing: ListingController, unlisted_property: Property):
    listing.set_active(unlisted_property.id, True)
    listing.select_all_platforms(unlisted_property.id)

    state = listing.set_active(unlisted_property.id, False)
    assert state.is_actively_listed is False
    assert state.listed_on == ()
    db_session.refresh(unlisted_property)
    _assert_invariant(unlisted_property)


def test_activating_keeps_platform_selection(listing: ListingController, unlisted_property: Property):
    listing.set_active(unlisted_property.id, True)
    listing.toggle_platform(unlisted_property.id, "Agoda")

    state = listing.set_active(unlisted_property.id, True)
    assert state.listed_on == ("Agoda",)


def test_select_and_deselect_all(listing: ListingController, unlisted_property: Property):
    with pytest.raises(InvalidOperation):
        listing.select_all_platforms(unlisted_property.id)
    with pytest.raises(InvalidOperation):
        listing.deselect_all_platforms(unlisted_property.id)

    listing.set_active(unlisted_property.id, True)
    assert listing.select_all_platforms(unlisted_property.id).listed_on == ALL_PLATFORMS
    assert listing.deselect_all_platforms(unlisted_property.id).listed_on == ()


def test_auto_list_flag_is_not_retroactive(listing: ListingController, unlisted_property: Property):
    state = listing.set_auto_list_when_vacant(unlisted_property.id, True)
    assert state.auto_list_when_vacant is True
    assert state.is_actively_listed is False
    assert state.listed_on == ()


def test_on_vacancy_lists_everywhere_when_enabled(listing: ListingController, unlisted_property: Property):
    assert listing.on_vacancy(unlisted_property) is False
    assert unlisted_property.is_actively_listed is False

    unlisted_property.auto_list_when_vacant = True
    assert listing.on_vacancy(unlisted_property) is True
    assert unlisted_property.is_actively_listed is True
    assert tuple(unlisted_property.listed_on) == ALL_PLATFORMS


def test_on_vacancy_uses_injected_platforms(db_session: Session, unlisted_property: Property):
    controller = ListingController(db_session, config=ListingConfig(platforms=("Airbnb", "VRBO")))
    unlisted_property.auto_list_when_vacant = True
    controller.on_vacancy(unlisted_property)
    assert unlisted_property.listed_on == ["Airbnb", "VRBO"]


def test_update_applies_partial_changes(listing: ListingController, unlisted_property: Property):
    state = listing.update(
        unlisted_property.id,
        is_actively_listed=True,
        listed_on=["Expedia", "Airbnb", "Airbnb"],
        auto_list_when_vacant=True,
    )
    assert state.is_actively_listed is True
    assert state.listed_on == ("Airbnb", "Expedia")
    assert state.auto_list_when_vacant is True

    state = listing.update(unlisted_property.id, is_actively_listed=False)
    assert state.listed_on == ()
    assert state.auto_list_when_vacant is True


def test_update_rejects_platforms_on_inactive_listing(
    db_session: Session, listing: ListingController, unlisted_property: Property,
):
    with pytest.raises(InvalidOperation):
        listing.update(unlisted_property.id, listed_on=["Airbnb"], auto_list_when_vacant=True)

    # Nothing from the rejected update sticks.
    db_session.refresh(unlisted_property)
    assert unlisted_property.auto_list_when_vacant is False
    assert unlisted_property.listed_on == []


def test_missing_property(listing: ListingController):
    with pytest.raises(NotFoundError):
        listing.set_active(999, True)
    with pytest.raises(NotFoundError):
        listing.state(999)


def test_config_rejects_empty_platform_list():
    with pytest.raises(ValueError):
        ListingConfig(platforms=())


def test_default_config_comes_from_settings():
    assert ListingConfig().platforms == ALL_PLATFORMS


def test_changes_are_published_after_commit(
    listing: ListingController, event_bus: EventBus, unlisted_property: Property,
):
    received = []
    event_bus.subscribe(EventType.LISTING_UPDATED, received.append)

    listing.set_active(unlisted_property.id, True)
    listing.toggle_platform(unlisted_property.id, "VRBO")
    with pytest.raises(ValidationError):
        listing.toggle_platform(unlisted_property.id, "Craigslist")

    assert [e.data["listed_on"] for e in received] == [[], ["VRBO"]]
