"""
RawEvent model for unprocessed provider items (Gmail messages, Calendar events).
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import String, Text, Boolean, DateTime, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, utcnow


class RawEvent(Base):
    """
    A provider-native record ingested verbatim.

    Rows are append-only during sync. Deduplication against earlier batches
    happens in the normalization stage that consumes them.
    """

    __tablename__ = "raw_events"
    __table_args__ = (
        Index("idx_raw_events_user_provider_occurred", "user_id", "provider", "occurred_at"),
        Index("idx_raw_events_batch_id", "batch_id"),
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
        comment="gmail | calendar",
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
    )
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
    )
    batch_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
    )
    source_meta: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
    )
    source_id: Mapped[str | None] = mapped_column(
        Text,
        comment="Provider item id (Gmail message id / Calendar event id)",
    )
    processed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
    )

    def __repr__(self) -> str:
        return f"<RawEvent(provider={self.provider!r}, source_id={self.source_id!r})>"
