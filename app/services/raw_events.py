"""
Persistence for raw provider events.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models import RawEvent, ensure_utc


def insert_raw_event(
    db: Session,
    *,
    user_id: UUID,
    provider: str,
    payload: dict[str, Any],
    occurred_at: datetime,
    batch_id: UUID | None,
    source_meta: dict[str, Any] | None = None,
    source_id: str | None = None,
    contact_id: UUID | None = None,
    commit: bool = True,
) -> RawEvent:
    """
    Append one raw event.

    No deduplication happens here; the normalization stage handles repeats.
    """
    event = RawEvent(
        user_id=user_id,
        provider=provider,
        payload=payload,
        occurred_at=occurred_at,
        contact_id=contact_id,
        batch_id=batch_id,
        source_meta=source_meta,
        source_id=source_id,
    )
    db.add(event)
    if commit:
        db.commit()
    return event


def latest_occurred_at(db: Session, user_id: UUID, provider: str) -> datetime | None:
    """Newest occurred_at stored for the user and provider, or None."""
    latest = db.scalar(
        select(func.max(RawEvent.occurred_at)).where(
            RawEvent.user_id == user_id,
            RawEvent.provider == provider,
        )
    )
    return ensure_utc(latest)
