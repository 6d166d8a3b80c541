"""Error taxonomy shared by the availability core and the HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hostdesk.intervals import ConflictResult


class HostDeskError(Exception):
    """Base exception for HostDesk."""


class ValidationError(HostDeskError):
    """Malformed input: bad interval, guest count over capacity, unknown platform."""


class InvalidOperation(HostDeskError):
    """The request is well-formed but not allowed in the current state."""


class NotFoundError(HostDeskError):
    """A referenced property, booking or task does not exist."""


class SchedulingConflict(HostDeskError):
    """A proposed interval overlaps existing non-cancelled commitments.

    Carries the conflict result so the caller can show the operator which
    bookings or tasks are in the way.
    """

    def __init__(self, result: ConflictResult) -> None:
        self.result = result
        ids = ", ".join(c.event_id for c in result.conflicts)
        super().__init__(f"Interval {result.proposed} conflicts with {ids}")

    @property
    def conflicts(self):
        return self.result.conflicts


@dataclass(frozen=True)
class IntegrityWarning:
    """Stored property status disagrees with the status derived from the calendar.

    Not raised. The derived value is authoritative for conflict logic; the
    stored one is still shown to the operator alongside this warning.
    """

    property_id: int
    stored: str
    derived: str

    @property
    def message(self) -> str:
        return (
            f"Property {self.property_id} is marked {self.stored} "
            f"but its calendar says {self.derived}"
        )
