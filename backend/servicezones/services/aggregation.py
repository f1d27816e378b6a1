"""Periodic recomputation of per-boundary shop counts.

One refresher owns the admin_area_shop_stats table. Runs are single-flight:
a timer tick or admin trigger that arrives while a run is in progress is
skipped rather than queued. Within a process an asyncio lock enforces this;
across API processes and Celery workers a Redis lock on AGGREGATION_LOCK_KEY
does. A failure while counting one boundary is recorded and the run moves on
to the next boundary.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncContextManager, Callable, Optional

from redis import asyncio as aioredis
from redis.exceptions import LockError
from sqlalchemy.exc import SQLAlchemyError

from servicezones.config import get_settings
from servicezones.services.store import open_store
from servicezones.services.store_base import BoundaryStore

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], AsyncContextManager[BoundaryStore]]
# Returns a non-blocking lock exposing awaitable acquire() and release()
SharedLockFactory = Callable[[], Any]

# Failures that make a whole run worth retrying
TRANSIENT_ERRORS = (SQLAlchemyError, OSError)


def redis_lock_factory(redis_url: str, key: str, timeout: int) -> SharedLockFactory:
    """Build non-blocking Redis locks on ``key`` shared with the Celery worker."""
    client = aioredis.Redis.from_url(redis_url)

    def factory():
        return client.lock(key, timeout=timeout, blocking=False)

    return factory


@dataclass
class RefreshReport:
    """Outcome of one aggregation run."""
    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    boundaries: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: dict[int, str] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "boundaries": self.boundaries,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "failed": {str(k): v for k, v in self.failed.items()},
        }


class AggregateRefresher:
    """Single-worker refresher for the cached shop counts."""

    def __init__(
        self,
        store_factory: StoreFactory = open_store,
        shared_lock_factory: Optional[SharedLockFactory] = None,
    ):
        self._store_factory = store_factory
        self._shared_lock_factory = shared_lock_factory
        self._shared_lock = None
        self._lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task] = None
        self._trigger_tasks: set[asyncio.Task] = set()
        self.last_report: Optional[RefreshReport] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_once(self, trigger: str = "manual") -> Optional[RefreshReport]:
        """Run one aggregation pass now; None when another pass is in progress."""
        if self._lock.locked():
            logger.info("Shop count aggregation already running; skipping %s run", trigger)
            return None
        async with self._lock:
            if not await self._claim(trigger):
                return None
            try:
                return await self._run_with_retry(trigger)
            finally:
                await self._release_claim()

    async def try_trigger(self, trigger: str = "admin") -> bool:
        """Start a pass in the background; False when one is already in progress."""
        if self._lock.locked():
            return False
        # Uncontended, so this acquires without suspending
        await self._lock.acquire()
        try:
            claimed = await self._claim(trigger)
        except BaseException:
            self._lock.release()
            raise
        if not claimed:
            self._lock.release()
            return False
        task = asyncio.create_task(self._run_locked(trigger))
        self._trigger_tasks.add(task)
        task.add_done_callback(self._trigger_done)
        return True

    async def _run_locked(self, trigger: str) -> Optional[RefreshReport]:
        try:
            return await self._run_with_retry(trigger)
        finally:
            try:
                await self._release_claim()
            finally:
                self._lock.release()

    async def _claim(self, trigger: str) -> bool:
        """Take the cross-process lock; False when another process holds it."""
        if self._shared_lock_factory is None:
            return True
        lock = self._shared_lock_factory()
        if not await lock.acquire():
            logger.info("Shop count aggregation already running elsewhere; skipping %s run", trigger)
            return False
        self._shared_lock = lock
        return True

    async def _release_claim(self) -> None:
        lock, self._shared_lock = self._shared_lock, None
        if lock is None:
            return
        try:
            await lock.release()
        except LockError:
            logger.warning("Aggregation lock %s expired before release", get_settings().AGGREGATION_LOCK_KEY)

    def _trigger_done(self, task: asyncio.Task) -> None:
        self._trigger_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Triggered shop count aggregation failed: %s", task.exception())

    async def run_forever(self) -> None:
        """Timer loop: wait the initial delay, then refresh at a fixed interval.

        A failed tick is logged and the next one still runs; only cancellation
        ends the loop.
        """
        settings = get_settings()
        await asyncio.sleep(settings.AGGREGATION_INITIAL_DELAY_SECONDS)
        while True:
            try:
                await self.run_once("timer")
            except Exception:
                logger.exception("Scheduled shop count aggregation failed")
            await asyncio.sleep(settings.AGGREGATION_INTERVAL_SECONDS)

    def start(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self.run_forever())
            logger.info("Shop count aggregation loop started")

    async def stop(self) -> None:
        """Cancel the timer loop and any triggered run; an open upsert is rolled back."""
        tasks = [t for t in [self._loop_task, *self._trigger_tasks] if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        logger.info("Shop count aggregation loop stopped")

    async def _run_with_retry(self, trigger: str) -> RefreshReport:
        settings = get_settings()
        attempts = max(settings.AGGREGATION_RETRY_ATTEMPTS, 1)
        attempt = 0
        while True:
            attempt += 1
            try:
                report = await self._refresh(trigger)
            except TRANSIENT_ERRORS as exc:
                if attempt >= attempts:
                    logger.error("Shop count aggregation failed after %d attempts: %s", attempts, exc)
                    raise
                logger.warning("Shop count aggregation attempt %d/%d failed: %s; retrying in %ss",
                               attempt, attempts, exc, settings.AGGREGATION_RETRY_DELAY_SECONDS)
                await asyncio.sleep(settings.AGGREGATION_RETRY_DELAY_SECONDS)
            else:
                self.last_report = report
                return report

    async def _refresh(self, trigger: str) -> RefreshReport:
        report = RefreshReport(trigger=trigger, started_at=datetime.utcnow())
        logger.info("Shop count aggregation started (%s)", trigger)

        async with self._store_factory() as store:
            boundaries = await store.list_boundaries()
            report.boundaries = len(boundaries)
            previous = await store.get_stats([b.id for b in boundaries])

            for boundary in boundaries:
                try:
                    count = await store.count_shops_in_boundary(boundary.id)
                    existing = previous.get(boundary.id)
                    if existing is not None and existing.shop_count == count:
                        report.unchanged += 1
                        continue
                    await store.upsert_stats(boundary.id, count, datetime.utcnow())
                except Exception as exc:
                    logger.exception("Shop count refresh failed for boundary %s (%s)",
                                     boundary.id, boundary.official_code)
                    report.failed[boundary.id] = str(exc)
                    await store.recover()
                    continue

                if existing is None:
                    report.created += 1
                else:
                    report.updated += 1

        report.finished_at = datetime.utcnow()
        logger.info(
            "Shop count aggregation finished (%s): %d boundaries, %d created, %d updated, "
            "%d unchanged, %d failed",
            trigger, report.boundaries, report.created, report.updated,
            report.unchanged, len(report.failed),
        )
        return report


_refresher: Optional[AggregateRefresher] = None


def get_refresher() -> AggregateRefresher:
    """Get the process-wide refresher instance."""
    global _refresher
    if _refresher is None:
        settings = get_settings()
        shared_lock_factory = None
        if settings.AGGREGATION_SHARED_LOCK:
            shared_lock_factory = redis_lock_factory(
                settings.REDIS_URL,
                settings.AGGREGATION_LOCK_KEY,
                settings.AGGREGATION_LOCK_TIMEOUT_SECONDS,
            )
        _refresher = AggregateRefresher(shared_lock_factory=shared_lock_factory)
    return _refresher
