"""Per-property write serialization."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session

from hostdesk.errors import NotFoundError
from hostdesk.models.property import Property


class PropertyLocks:
    """Registry of one re-entrant lock per property id.

    Writers to different properties never wait on each other.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.RLock] = {}

    def get(self, property_id: int) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(property_id)
            if lock is None:
                lock = self._locks[property_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, property_id: int) -> Iterator[None]:
        with self.get(property_id):
            yield


property_locks = PropertyLocks()


def lock_property(session: Session, property_id: int) -> Property:
    """Load a property row with ``SELECT ... FOR UPDATE``.

    The row lock lasts until the session's transaction ends; SQLite ignores
    it and relies on the in-process lock instead.
    """
    prop = session.scalars(
        select(Property)
        .where(Property.id == property_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).first()
    if prop is None:
        raise NotFoundError(f"Property {property_id} not found")
    return prop
