"""Bootstrap logic for wiring the review service."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spaced_review.app.settings import AppSettings
from spaced_review.db import get_session_factory, run_migrations_if_needed
from spaced_review.db.schedules import (
    FallbackScheduleStore,
    ScheduleStore,
    SqlScheduleStore,
)
from spaced_review.scheduling.service import ReviewService
from spaced_review.scheduling.stats import StatsCache


LOGGER = logging.getLogger(__name__)


def configure_logging(log_level: str) -> None:
    """Set up project-wide logging configuration."""
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        level=log_level,
    )


def build_store(
    settings: AppSettings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> ScheduleStore:
    """Create the schedule store described by the settings."""
    store: ScheduleStore = SqlScheduleStore(session_factory or get_session_factory())
    if settings.use_memory_fallback:
        LOGGER.info("In-memory fallback enabled for the schedule store.")
        store = FallbackScheduleStore(store)
    return store


def build_review_service(settings: AppSettings, store: ScheduleStore) -> ReviewService:
    return ReviewService(
        store,
        storage_timeout=settings.storage_timeout,
        horizon_days=settings.horizon_days,
        stats_cache=StatsCache(settings.stats_cache_ttl),
        max_update_attempts=settings.max_update_attempts,
    )


def bootstrap(settings: AppSettings) -> ReviewService:
    """Configure logging, apply migrations and return a ready review service."""
    configure_logging(settings.log_level)
    LOGGER.info("Starting %s in %s mode.", settings.app_name, settings.app_env)

    try:
        run_migrations_if_needed()
    except Exception:
        LOGGER.exception("Database migrations failed. Aborting startup.")
        raise

    return build_review_service(settings, build_store(settings))
