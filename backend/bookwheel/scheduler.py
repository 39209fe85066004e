"""
Background scheduler for periodic catalog sync.

Uses APScheduler to fetch catalog deltas in the background. The fetch runs on
the scheduler thread; the resulting engine updates are handed back to the
event loop that owns the carousels.
"""
import asyncio
import logging
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from bookwheel.core.config import settings
from bookwheel.services.carousel_registry import CarouselRegistry
from bookwheel.services.catalog_sync import CatalogUnavailableError

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


def sync_catalog_job(registry: CarouselRegistry, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
    """Scheduled job: fetch new books and push them into live carousels."""
    logger.info("[SYNC] Running catalog sync job")
    deliver = loop.call_soon_threadsafe if loop is not None else None
    try:
        fetched = registry.sync_catalog(deliver=deliver)
        logger.info(f"[SYNC] Catalog sync job completed: {len(fetched)} new book(s)")
    except CatalogUnavailableError as e:
        logger.error(f"[SYNC] Catalog sync job failed: {e}")


def start_scheduler(registry: CarouselRegistry, loop: Optional[asyncio.AbstractEventLoop] = None):
    """
    Start the background scheduler with the catalog sync job.
    Call this from the FastAPI startup event.
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return

    if not settings.catalog_sync_enabled:
        logger.info("Catalog sync disabled (CATALOG_API_URL not set), scheduler not started")
        return

    logger.info("Starting background scheduler")
    scheduler = BackgroundScheduler()

    scheduler.add_job(
        sync_catalog_job,
        trigger=IntervalTrigger(minutes=settings.CATALOG_SYNC_INTERVAL_MINUTES),
        args=[registry, loop],
        id='catalog_sync',
        name='Sync catalog deltas into live carousels',
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        "Background scheduler started with catalog sync every %d minute(s)",
        settings.CATALOG_SYNC_INTERVAL_MINUTES,
    )


def stop_scheduler():
    """
    Stop the background scheduler.
    Call this from the FastAPI shutdown event.
    """
    global scheduler

    if scheduler is not None:
        logger.info("Stopping background scheduler")
        scheduler.shutdown()
        scheduler = None
