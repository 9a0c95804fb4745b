"""
SyncAudit model recording preview/approve decisions for provider syncs.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import String, DateTime, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column, Session

from app.models.base import Base, JSONType, utcnow


class SyncAction(str, Enum):
    """What the user did with a sync."""

    PREVIEW = "preview"
    APPROVE = "approve"
    UNDO = "undo"


class SyncAudit(Base):
    """Append-only trail of sync previews and approvals per user/provider."""

    __tablename__ = "sync_audit"
    __table_args__ = (
        Index("idx_sync_audit_user_provider_created", "user_id", "provider", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
    )

    def __repr__(self) -> str:
        return f"<SyncAudit(provider={self.provider!r}, action={self.action!r})>"

    @classmethod
    def log(
        cls,
        db: Session,
        user_id: uuid.UUID,
        provider: str,
        action: SyncAction,
        payload: dict[str, Any] | None = None,
    ) -> "SyncAudit":
        """Add an audit row to the session (caller commits)."""
        entry = cls(
            user_id=user_id,
            provider=provider,
            action=action.value,
            payload=payload,
        )
        db.add(entry)
        return entry
