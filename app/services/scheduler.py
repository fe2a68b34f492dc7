"""Internal task scheduler using APScheduler.

Runs housekeeping jobs within the FastAPI process. Uses PostgreSQL advisory
locks to prevent duplicate execution when multiple instances are running.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import text

from app.config import settings
from app.core.database import direct_session_maker
from app.domain.session_operations import session_ops
from app.models.base import utcnow

logger = logging.getLogger(__name__)

# Advisory lock IDs (arbitrary unique integers, one per job)
SESSION_SWEEP_LOCK_ID = 731904


@asynccontextmanager
async def advisory_lock(lock_id: int) -> AsyncIterator[bool]:
    """
    Acquire a PostgreSQL advisory lock for the duration of the context.

    pg_try_advisory_lock() returns immediately: if another instance holds
    the lock we skip the run. Databases without advisory locks (SQLite in
    development) always acquire.
    """
    async with direct_session_maker() as session:
        if session.bind.dialect.name != "postgresql":
            yield True
            return

        result = await session.execute(
            text("SELECT pg_try_advisory_lock(:lock_id)"),
            {"lock_id": lock_id},
        )
        acquired = result.scalar()

        if not acquired:
            yield False
            return

        try:
            yield True
        finally:
            await session.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"),
                {"lock_id": lock_id},
            )
            await session.commit()


async def sweep_expired_sessions() -> int | None:
    """
    Mark every verified session past its expiry as expired.

    Issuance already retires a pair's stale session on demand; the sweep keeps
    the verified set small for everything else. Returns the number of sessions
    expired, or None if skipped (lock held by another instance).
    """
    async with advisory_lock(SESSION_SWEEP_LOCK_ID) as acquired:
        if not acquired:
            logger.info("[scheduler] Session sweep: skipped (another instance is running)")
            return None

        try:
            async with direct_session_maker() as db:
                expired = await session_ops.expire_stale(db, utcnow())
                await db.commit()

            if expired:
                logger.info(f"[scheduler] Session sweep: expired {expired} sessions")
            return expired

        except Exception as e:
            logger.exception(f"[scheduler] Session sweep: failed with error: {e}")
            return None


class Scheduler:
    """Manages the APScheduler instance and job registration."""

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None

    def start(self) -> None:
        """Start the scheduler and register jobs."""
        if not settings.scheduler_enabled:
            logger.info("[scheduler] Disabled via SCHEDULER_ENABLED=false")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            sweep_expired_sessions,
            trigger=IntervalTrigger(minutes=settings.session_sweep_minutes),
            id="session_sweep",
            name="Expired Session Sweep",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            f"[scheduler] Started: session sweep every {settings.session_sweep_minutes} min"
        )

    def stop(self) -> None:
        """Shut down the scheduler if running."""
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("[scheduler] Stopped")


scheduler = Scheduler()
