"""Half-open interval arithmetic used by conflict checks and status derivation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Iterable

from hostdesk.errors import ValidationError


def naive(value: datetime) -> datetime:
    """Drop the offset of an aware datetime, converting it to UTC first.

    Stored stays and tasks are naive, and aware values cannot be compared
    with them.
    """
    if value.tzinfo is None or value.utcoffset() is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def as_instant(value: date | datetime, at: time) -> datetime:
    """Normalize a date (evaluated at ``at``) or a datetime to a naive datetime."""
    if isinstance(value, datetime):
        return naive(value)
    return datetime.combine(value, at)


@dataclass(frozen=True)
class Interval:
    """A half-open ``[start, end)`` span of time."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", naive(self.start))
        object.__setattr__(self, "end", naive(self.end))
        if self.end <= self.start:
            raise ValidationError(f"Interval end {self.end} must be after start {self.start}")

    def __str__(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"

    @classmethod
    def for_stay(cls, checkin: date, checkout: date, checkin_at: time, checkout_at: time) -> Interval:
        """Occupied span of a stay, from check-in time to check-out time."""
        if checkout <= checkin:
            raise ValidationError(f"Check-out {checkout} must be after check-in {checkin}")
        return cls(datetime.combine(checkin, checkin_at), datetime.combine(checkout, checkout_at))

    def overlaps(self, other: Interval) -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


@dataclass(frozen=True)
class Commitment:
    """An existing booking or task as seen by the conflict check."""

    kind: str  # booking, cleaning, maintenance
    record_id: int
    interval: Interval
    label: str = ""

    @property
    def event_id(self) -> str:
        return f"{self.kind}-{self.record_id}"


@dataclass(frozen=True)
class ConflictResult:
    proposed: Interval
    conflicts: tuple[Commitment, ...] = field(default_factory=tuple)

    def __bool__(self) -> bool:
        return bool(self.conflicts)

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicts)

    @property
    def event_ids(self) -> list[str]:
        return [c.event_id for c in self.conflicts]


def find_overlaps(
    proposed: Interval,
    commitments: Iterable[Commitment],
    excluding_event_id: str | None = None,
) -> ConflictResult:
    """Return every commitment whose interval overlaps ``proposed``."""
    hits = tuple(
        c for c in commitments
        if c.event_id != excluding_event_id and c.interval.overlaps(proposed)
    )
    return ConflictResult(proposed=proposed, conflicts=hits)
