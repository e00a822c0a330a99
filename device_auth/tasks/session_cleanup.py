"""Session cleanup background job - expires dead sessions and purges old ones."""
import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from device_auth.core.config import get_settings
from device_auth.core.database import AsyncSessionLocal
from device_auth.services import session_service

logger = logging.getLogger(__name__)


async def session_cleanup_job(session_factory=AsyncSessionLocal) -> tuple[int, int]:
    """
    Sweep the session table.

    - Active rows past ``expires_at`` are flipped inactive (reason
      ``expired``) so they stop holding the per-device unique slot.
    - Inactive rows revoked more than ``SESSION_RETENTION_DAYS`` ago
      are deleted.

    Returns ``(expired_count, purged_count)``.
    """
    logger.info("Starting session cleanup job...")
    start_time = datetime.now(timezone.utc)
    cutoff = start_time - timedelta(days=get_settings().SESSION_RETENTION_DAYS)

    try:
        async with session_factory() as db:
            expired_count = await session_service.expire_stale_sessions(db)
            purged_count = await session_service.purge_inactive_sessions(cutoff, db)
            await db.commit()
    except Exception as e:
        logger.error("Session cleanup job failed: %s", str(e))
        raise

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        "Session cleanup completed: %d expired, %d purged in %.2f seconds",
        expired_count, purged_count, duration,
    )
    return expired_count, purged_count


def schedule_session_cleanup_job(scheduler: AsyncIOScheduler):
    """Register the session cleanup job with the scheduler."""
    minutes = get_settings().SESSION_SWEEP_INTERVAL_MINUTES
    scheduler.add_job(
        session_cleanup_job,
        'interval',
        minutes=minutes,
        id='session_cleanup',
        name='Session Cleanup',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )

    logger.info("Scheduled session cleanup job to run every %d minutes", minutes)
