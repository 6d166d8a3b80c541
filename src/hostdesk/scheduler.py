"""APScheduler setup for periodic status refresh."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from hostdesk.config import settings
from hostdesk.database import get_session

logger = logging.getLogger(__name__)


def refresh_statuses() -> None:
    """Re-derive every property's status so finished stays and tasks free the property."""
    from hostdesk.modules.availability import AvailabilityEngine

    session = get_session()
    try:
        AvailabilityEngine(session).refresh_all_statuses()
    except Exception:
        logger.exception("Status refresh failed")
    finally:
        session.close()


def create_scheduler() -> BackgroundScheduler:
    """Create and configure the background scheduler."""
    scheduler = BackgroundScheduler()
    sched_config = settings.get("scheduler", {})

    scheduler.add_job(
        refresh_statuses,
        "interval",
        minutes=sched_config.get("status_refresh_interval", 15),
        id="status_refresh",
        name="Property Status Refresh",
    )

    logger.info("Scheduler configured with %d jobs", len(scheduler.get_jobs()))
    return scheduler
