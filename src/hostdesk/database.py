"""SQLAlchemy engine and session setup."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from hostdesk.config import get_database_url


class Base(DeclarativeBase):
    pass


_database_url = get_database_url()

engine = create_engine(
    _database_url,
    echo=False,
    # SQLite needs this for multi-thread
    connect_args={"check_same_thread": False} if _database_url.startswith("sqlite") else {},
)

SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def get_session() -> Session:
    """Create a new database session."""
    return SessionLocal()


def init_db() -> None:
    """Create all tables. Import models first so they register with Base."""
    import hostdesk.models.booking  # noqa: F401
    import hostdesk.models.property  # noqa: F401
    import hostdesk.models.task  # noqa: F401

    Base.metadata.create_all(bind=engine)
