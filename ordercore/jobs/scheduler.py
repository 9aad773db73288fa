"""
APScheduler Configuration

Background job scheduler for periodic order-core work. Currently one job:
NDR auto-resolution, enabled with NDR_AUTO_RESOLVE_ENABLED.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from ordercore.config import Settings, settings as default_settings
from ordercore.jobs.ndr_jobs import auto_resolve_pending_ndrs
from ordercore.services.ndr_service import NDRService

logger = logging.getLogger(__name__)

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

scheduler: Optional[AsyncIOScheduler] = None


def build_scheduler(config: Optional[Settings] = None) -> AsyncIOScheduler:
    config = config or default_settings
    return AsyncIOScheduler(
        jobstores={'default': MemoryJobStore()},
        executors={'default': AsyncIOExecutor()},
        job_defaults=job_defaults,
        timezone=config.SCHEDULER_TIMEZONE,
    )


def start_scheduler(ndr_service: NDRService, config: Optional[Settings] = None) -> bool:
    """
    Start the background job scheduler. Returns False when no job is
    enabled; the scheduler is then not started at all.
    """
    global scheduler
    config = config or default_settings

    if not config.NDR_AUTO_RESOLVE_ENABLED:
        logger.info("NDR auto-resolution disabled, background scheduler not started")
        return False

    if scheduler is not None and scheduler.running:
        return True

    # Fresh instance per start: AsyncIOScheduler binds to the loop it starts on
    scheduler = build_scheduler(config)
    scheduler.add_job(
        auto_resolve_pending_ndrs,
        'interval',
        minutes=config.NDR_AUTO_RESOLVE_INTERVAL_MINUTES,
        args=[ndr_service],
        id='auto_resolve_pending_ndrs',
        name='Auto-resolve pending NDRs',
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Background job scheduler started")

    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")
    return True


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    global scheduler
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")
    scheduler = None


def get_job_status():
    """Get status of all scheduled jobs."""
    if scheduler is None:
        return []
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
