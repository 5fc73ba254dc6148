"""
Scheduled tasks for the sync service.
This module sets up scheduled tasks that run within the FastAPI application.
"""

import logging
from datetime import datetime
from typing import Any, Dict

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from syncbridge.context import EngineContext
from syncbridge.core.enums import SyncDirection
from syncbridge.core.exceptions import SyncInProgressError
from syncbridge.services.sync.types import SyncFilters, SyncRequest

logger = logging.getLogger(__name__)


async def scheduled_sync_task(context: EngineContext) -> Dict[str, Any]:
    """Run a "changed since last sync" pass for every configured user."""
    settings = context.settings
    outcomes: Dict[str, Any] = {}
    logger.info(f"=== SCHEDULED SYNC STARTING ({len(settings.SYNC_SCHEDULE_USER_IDS)} user(s)) ===")

    for user_id in settings.SYNC_SCHEDULE_USER_IDS:
        request = SyncRequest(
            direction=SyncDirection(settings.SYNC_SCHEDULE_DIRECTION),
            filters=SyncFilters(changed_since_last_sync=True),
            triggered_by="scheduler",
        )
        try:
            result = await context.runner.run(user_id, request)
        except SyncInProgressError as e:
            logger.info(f"Skipping scheduled sync for {user_id}: {e}")
            outcomes[user_id] = "skipped"
            continue
        except Exception as e:
            logger.exception(f"Scheduled sync for {user_id} crashed: {e}")
            outcomes[user_id] = "error"
            continue

        outcomes[user_id] = result.status.value
        logger.info(
            f"Scheduled sync for {user_id}: {result.status.value} "
            f"({result.items_succeeded}/{result.items_processed} succeeded)"
        )
    return outcomes


async def expire_restore_points_task(context: EngineContext) -> int:
    """Task to expire restore points past the retention window"""
    return await context.restore_points.expire_restore_points(context.settings.RESTORE_POINT_RETENTION_DAYS)


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.info(f"Job {event.job_id} executed successfully at {datetime.now()}")


def create_scheduler(context: EngineContext) -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    settings = context.settings
    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    if settings.SYNC_SCHEDULE_ENABLED:
        scheduler.add_job(
            scheduled_sync_task,
            CronTrigger.from_crontab(settings.SYNC_SCHEDULE),
            args=[context],
            id="scheduled_sync",
            name="Scheduled Sync",
            replace_existing=True,
            max_instances=1,  # Only one sync at a time
            misfire_grace_time=3600
        )
        logger.info(f"Scheduled sync job added with schedule: {settings.SYNC_SCHEDULE}")
    else:
        logger.info("Scheduled sync is disabled. Set SYNC_SCHEDULE_ENABLED=true to enable")

    # Runs daily at 2 AM
    scheduler.add_job(
        expire_restore_points_task,
        CronTrigger(hour=2, minute=0),
        args=[context],
        id="expire_restore_points",
        name="Expire Restore Points",
        replace_existing=True,
        max_instances=1
    )
    return scheduler


def start_scheduler(scheduler: AsyncIOScheduler):
    if not scheduler.running:
        scheduler.start()
        jobs = scheduler.get_jobs()
        logger.info(f"Scheduler started with {len(jobs)} job(s)")
        for job in jobs:
            logger.info(f"  - {job.name}: {job.trigger}")


def stop_scheduler(scheduler: AsyncIOScheduler):
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
