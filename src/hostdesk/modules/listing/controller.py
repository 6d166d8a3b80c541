"""Multi-channel listing state of a property."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.orm import Session

from hostdesk.config import get_listing_platforms
from hostdesk.errors import InvalidOperation, NotFoundError, ValidationError
from hostdesk.events import Event, EventBus, EventType, event_bus
from hostdesk.locks import lock_property, property_locks
from hostdesk.models.property import Property

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListingConfig:
    """Platforms a property may be listed on, in display order."""

    platforms: tuple[str, ...] = field(default_factory=get_listing_platforms)

    def __post_init__(self) -> None:
        if not self.platforms:
            raise ValueError("ListingConfig needs at least one platform")

    def normalize(self, platforms: Iterable[str]) -> list[str]:
        """Validate platform ids and return them deduplicated in config order."""
        wanted = set()
        for platform in platforms:
            if platform not in self.platforms:
                raise ValidationError(f"Unknown platform {platform!r}")
            wanted.add(platform)
        return [p for p in self.platforms if p in wanted]


@dataclass(frozen=True)
class ListingState:
    property_id: int
    is_actively_listed: bool
    listed_on: tuple[str, ...]
    auto_list_when_vacant: bool

    @classmethod
    def of(cls, prop: Property) -> ListingState:
        return cls(
            property_id=prop.id,
            is_actively_listed=bool(prop.is_actively_listed),
            listed_on=tuple(prop.listed_on or ()),
            auto_list_when_vacant=bool(prop.auto_list_when_vacant),
        )


class ListingController:
    """Manages ``is_actively_listed``, ``listed_on`` and ``auto_list_when_vacant``.

    Keeps the rule that a property is only listed on platforms while its
    listing is active.
    """

    def __init__(
        self,
        session: Session,
        config: ListingConfig | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._session = session
        self.config = config or ListingConfig()
        self._bus = bus or event_bus

    # --- Operator actions ---

    def set_active(self, property_id: int, active: bool) -> ListingState:
        def apply(prop: Property) -> None:
            prop.is_actively_listed = active
            if not active:
                prop.listed_on = []

        return self._mutate(property_id, apply)

    def toggle_platform(self, property_id: int, platform: str) -> ListingState:
        def apply(prop: Property) -> None:
            self._require_active(prop, f"toggle {platform}")
            (platform_id,) = self.config.normalize([platform])
            current = list(prop.listed_on or [])
            if platform_id in current:
                current.remove(platform_id)
            else:
                current.append(platform_id)
            prop.listed_on = self.config.normalize(current)

        return self._mutate(property_id, apply)

    def select_all_platforms(self, property_id: int) -> ListingState:
        def apply(prop: Property) -> None:
            self._require_active(prop, "select all platforms")
            prop.listed_on = list(self.config.platforms)

        return self._mutate(property_id, apply)

    def deselect_all_platforms(self, property_id: int) -> ListingState:
        def apply(prop: Property) -> None:
            self._require_active(prop, "deselect all platforms")
            prop.listed_on = []

        return self._mutate(property_id, apply)

    def set_auto_list_when_vacant(self, property_id: int, enabled: bool) -> ListingState:
        """Flag only; takes effect at the next transition into Available."""

        def apply(prop: Property) -> None:
            prop.auto_list_when_vacant = enabled

        return self._mutate(property_id, apply)

    def update(
        self,
        property_id: int,
        is_actively_listed: bool | None = None,
        listed_on: Iterable[str] | None = None,
        auto_list_when_vacant: bool | None = None,
    ) -> ListingState:
        """Apply a partial listing update as one unit."""
        platforms = self.config.normalize(listed_on) if listed_on is not None else None

        def apply(prop: Property) -> None:
            if auto_list_when_vacant is not None:
                prop.auto_list_when_vacant = auto_list_when_vacant
            if is_actively_listed is not None:
                prop.is_actively_listed = is_actively_listed
            if not prop.is_actively_listed:
                if platforms:
                    raise InvalidOperation(
                        f"Property {prop.id} is not actively listed; enable listing before selecting platforms"
                    )
                prop.listed_on = []
            elif platforms is not None:
                prop.listed_on = platforms

        return self._mutate(property_id, apply)

    def state(self, property_id: int) -> ListingState:
        prop = self._session.get(Property, property_id)
        if prop is None:
            raise NotFoundError(f"Property {property_id} not found")
        return ListingState.of(prop)

    # --- Hook for the availability engine ---

    def on_vacancy(self, prop: Property) -> bool:
        """List the property everywhere if it auto-lists when vacant.

        Runs inside the caller's transaction and does not commit, so the
        status change and the listing change land together.
        """
        if not prop.auto_list_when_vacant:
            return False
        prop.is_actively_listed = True
        prop.listed_on = list(self.config.platforms)
        logger.info("Auto-listed property %s on %d platforms", prop.id, len(self.config.platforms))
        return True

    # --- Internals ---

    @staticmethod
    def _require_active(prop: Property, action: str) -> None:
        if not prop.is_actively_listed:
            raise InvalidOperation(f"Cannot {action}: property {prop.id} is not actively listed")

    def _mutate(self, property_id: int, apply) -> ListingState:
        with property_locks.hold(property_id):
            try:
                prop = lock_property(self._session, property_id)
                apply(prop)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            state = ListingState.of(prop)
        logger.info(
            "Listing for property %s: active=%s platforms=%s auto=%s",
            property_id, state.is_actively_listed, list(state.listed_on), state.auto_list_when_vacant,
        )
        self._bus.publish(Event(
            event_type=EventType.LISTING_UPDATED,
            data={
                "property_id": property_id,
                "is_actively_listed": state.is_actively_listed,
                "listed_on": list(state.listed_on),
            },
        ))
        return state
