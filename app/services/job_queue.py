"""
Job queue producer.

Jobs are rows in the jobs table; app.tasks.job_runner consumes the
sync kinds, the normalization stage consumes the normalize kinds.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.models import Job, JobKind, JobStatus
from app.utils.log_context import mask_user_id

logger = logging.getLogger(__name__)


def enqueue(
    db: Session,
    kind: JobKind | str,
    payload: dict[str, Any] | None,
    user_id: UUID,
    batch_id: UUID | None = None,
) -> Job:
    """
    Insert a queued job and commit.

    Args:
        db: Database session
        kind: Job kind, e.g. JobKind.NORMALIZE_EMAIL
        payload: JSON-serializable job arguments
        user_id: Owner of the job
        batch_id: Correlation id of the sync batch

    Returns:
        The new Job row
    """
    kind_value = kind.value if isinstance(kind, JobKind) else kind
    job = Job(
        user_id=user_id,
        kind=kind_value,
        payload=payload or {},
        status=JobStatus.QUEUED.value,
        attempts=0,
        batch_id=batch_id,
    )
    db.add(job)
    db.commit()
    logger.info(
        "Enqueued %s job for user %s (batch %s)",
        kind_value,
        mask_user_id(user_id),
        batch_id,
    )
    return job
