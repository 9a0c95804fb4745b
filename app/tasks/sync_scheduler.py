"""
Background scheduling using APScheduler.

Two periodic jobs: draining the sync job queue and sweeping stale
rate-limiter state.
"""

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import get_settings
from app.services.rate_limiter import google_api_rate_limiter

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def process_jobs_task():
    """Run one pass of the job queue."""
    from app.database import SessionLocal
    from app.tasks.job_runner import process_pending_jobs

    try:
        with SessionLocal() as db:
            await process_pending_jobs(db)
    except Exception as e:
        logger.error(f"Job runner tick failed: {e}")


def rate_limiter_maintenance_task():
    """Drop stale backoff/breaker/bucket entries."""
    google_api_rate_limiter.cleanup_expired_state()


def start_scheduler():
    """
    Start the background scheduler.

    Call this from FastAPI startup event.
    """
    settings = get_settings()

    scheduler.add_job(
        rate_limiter_maintenance_task,
        trigger=IntervalTrigger(seconds=settings.rate_limit_maintenance_interval_seconds),
        id="rate_limiter_maintenance",
        name="Sweep stale rate limiter state",
        replace_existing=True,
    )

    if settings.job_runner_enabled:
        scheduler.add_job(
            process_jobs_task,
            trigger=IntervalTrigger(seconds=settings.job_runner_interval_seconds),
            id="job_runner",
            name="Run queued Google sync jobs",
            replace_existing=True,
            max_instances=1,
            next_run_time=datetime.now(timezone.utc),  # Run immediately on startup
        )
    else:
        logger.info("Job runner is disabled in settings")

    scheduler.start()
    logger.info(
        f"Scheduler started (job runner every {settings.job_runner_interval_seconds}s, "
        f"maintenance every {settings.rate_limit_maintenance_interval_seconds}s)"
    )


def stop_scheduler():
    """
    Stop the background scheduler gracefully.

    Call this from FastAPI shutdown event.
    """
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
