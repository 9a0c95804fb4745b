"""
Helpers for structured log context on sync code paths.
"""

from typing import Any
from uuid import UUID


def mask_user_id(user_id: UUID | str | None) -> str:
    """Shorten a user id for log lines."""
    if user_id is None:
        return "-"
    return str(user_id)[:8] + "..."


def sync_log_context(
    user_id: UUID | str | None,
    service: str,
    batch_id: UUID | str | None = None,
    job_id: UUID | str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """
    Build the `extra=` mapping attached to sync log records.

    Example:
        logger.warning("Item skipped", extra=sync_log_context(user_id, "gmail", batch_id))
    """
    context: dict[str, Any] = {
        "user_id": mask_user_id(user_id),
        "service": service,
        "batch_id": str(batch_id) if batch_id else None,
        "job_id": str(job_id) if job_id else None,
    }
    context.update(extra)
    return context
