"""Celery application and scheduled tasks."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis
from celery import Celery
from redis.exceptions import LockError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from servicezones.config import get_settings
from servicezones.services.aggregation import TRANSIENT_ERRORS, AggregateRefresher
from servicezones.services.store import open_store
from servicezones.services.store_base import BoundaryStore

settings = get_settings()
logger = logging.getLogger(__name__)

# Create Celery application
celery_app = Celery(
    "service_zones",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    beat_schedule={
        "refresh-area-shop-stats": {
            "task": "servicezones.workers.tasks.refresh_area_shop_stats",
            "schedule": float(settings.AGGREGATION_INTERVAL_SECONDS),
        },
    },
)


@asynccontextmanager
async def task_store() -> AsyncIterator[BoundaryStore]:
    """Store bound to a fresh engine; each asyncio.run() gets its own event loop."""
    if settings.STORE_BACKEND.lower() != "postgis":
        async with open_store() as store:
            yield store
        return

    from servicezones.services.store_postgis import PostGISBoundaryStore

    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    try:
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with session_factory() as session:
            yield PostGISBoundaryStore(session)
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    name="servicezones.workers.tasks.refresh_area_shop_stats",
    autoretry_for=TRANSIENT_ERRORS,
    retry_backoff=True,
    retry_backoff_max=300,
    max_retries=3,
)
def refresh_area_shop_stats(self, trigger: str = "beat"):
    """Recompute cached shop counts for every active administrative boundary.

    Only one run happens across all workers; a run that finds the Redis lock
    held returns immediately.
    """
    client = redis.Redis.from_url(settings.REDIS_URL)
    lock = client.lock(
        settings.AGGREGATION_LOCK_KEY,
        timeout=settings.AGGREGATION_LOCK_TIMEOUT_SECONDS,
        blocking=False,
    )
    if not lock.acquire():
        logger.info("Shop count aggregation already running elsewhere; skipping %s run", trigger)
        return {"status": "skipped", "reason": "aggregation in progress"}

    try:
        refresher = AggregateRefresher(store_factory=task_store)
        report = asyncio.run(refresher.run_once(trigger))
    finally:
        try:
            lock.release()
        except LockError:
            logger.warning("Aggregation lock %s expired before release", settings.AGGREGATION_LOCK_KEY)

    if report is None:
        return {"status": "skipped", "reason": "aggregation in progress"}
    return {"status": "completed", **report.as_dict()}
