"""Operator-facing alerts raised by the availability engine."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from hostdesk.events import Event, EventBus, EventType, event_bus

logger = logging.getLogger(__name__)

ALERT_EVENTS = (
    EventType.STATUS_DIVERGENCE,
    EventType.DOUBLE_BOOKING_FLAGGED,
)


@dataclass(frozen=True)
class Alert:
    kind: str
    property_id: int | None
    data: dict[str, Any]
    raised_at: datetime


class OperatorAlerts:
    """Keeps the most recent status divergences and double bookings for review."""

    def __init__(self, maxlen: int = 200) -> None:
        self._alerts: deque[Alert] = deque(maxlen=maxlen)

    def setup_event_handlers(self, bus: EventBus | None = None) -> None:
        bus = bus or event_bus
        for event_type in ALERT_EVENTS:
            # Re-running setup must not double-record alerts.
            bus.unsubscribe(event_type, self._on_alert)
            bus.subscribe(event_type, self._on_alert)

    def _on_alert(self, event: Event) -> None:
        alert = Alert(
            kind=event.event_type.value,
            property_id=event.data.get("property_id"),
            data=dict(event.data),
            raised_at=event.timestamp,
        )
        self._alerts.append(alert)
        logger.warning("Operator alert %s: %s", alert.kind, alert.data)

    def recent(self, property_id: int | None = None) -> list[Alert]:
        """Newest first."""
        return [
            a for a in reversed(self._alerts)
            if property_id is None or a.property_id == property_id
        ]

    def clear(self) -> None:
        self._alerts.clear()
