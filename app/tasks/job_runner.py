"""
Runs queued Google sync jobs.

Only the sync kinds are handled here; normalize jobs stay queued for the
normalization stage.
"""

import logging
from typing import Any, Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import Job, JobKind, JobStatus
from app.tasks.sync_processors import SyncStats, run_calendar_sync, run_gmail_sync
from app.utils.log_context import sync_log_context

logger = logging.getLogger(__name__)

JobHandler = Callable[..., Awaitable[SyncStats]]

JOB_HANDLERS: dict[str, JobHandler] = {
    JobKind.GMAIL_SYNC.value: run_gmail_sync,
    JobKind.CALENDAR_SYNC.value: run_calendar_sync,
}


async def run_job(db: Session, job: Job) -> SyncStats | None:
    """
    Run one claimed job and record the outcome on its row.

    Errors are stored on the job and re-queued until job_max_attempts.
    """
    settings = get_settings()
    handler = JOB_HANDLERS[job.kind]

    job.start()
    db.commit()

    try:
        stats = await handler(db, job, job.user_id)
    except Exception as e:
        db.rollback()
        job.fail(f"{type(e).__name__}: {e}", settings.job_max_attempts)
        db.commit()
        logger.error(
            "Job %s (%s) failed on attempt %d: %s",
            job.id,
            job.kind,
            job.attempts,
            e,
            extra=sync_log_context(job.user_id, job.kind, job.batch_id, job.id),
        )
        return None

    if stats.batch_id and job.batch_id is None:
        job.batch_id = stats.batch_id
    job.complete()
    db.commit()
    return stats


async def process_pending_jobs(db: Session, limit: int | None = None) -> dict[str, Any]:
    """
    Claim and run queued sync jobs, oldest first.

    Args:
        db: Database session
        limit: Max jobs to run in this pass

    Returns:
        Dictionary with processed/succeeded/failed counts
    """
    settings = get_settings()
    limit = limit or settings.job_runner_batch_size

    jobs = db.scalars(
        select(Job)
        .where(
            Job.status == JobStatus.QUEUED.value,
            Job.kind.in_(list(JOB_HANDLERS)),
        )
        .order_by(Job.created_at)
        .limit(limit)
    ).all()

    results = {"processed": 0, "succeeded": 0, "failed": 0}
    for job in jobs:
        stats = await run_job(db, job)
        results["processed"] += 1
        if stats is None:
            results["failed"] += 1
        else:
            results["succeeded"] += 1

    if results["processed"]:
        logger.info(
            "Job runner processed %d job(s): %d succeeded, %d failed",
            results["processed"],
            results["succeeded"],
            results["failed"],
        )
    return results
