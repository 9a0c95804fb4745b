"""
UserSyncPrefs model for per-user Gmail/Calendar ingestion preferences.

Owned by the settings feature; the sync pipeline only reads it.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, Session

from app.models.base import Base, JSONType, utcnow


DEFAULT_GMAIL_QUERY = "category:primary -in:chats -in:drafts newer_than:30d"
DEFAULT_GMAIL_LABEL_EXCLUDES = ["Promotions", "Social", "Forums", "Updates"]
DEFAULT_CALENDAR_TIME_WINDOW_DAYS = 60
DEFAULT_CALENDAR_FUTURE_DAYS = 90


class UserSyncPrefs(Base):
    """
    One row per user with query/filter/window fields.

    Use for_user() to read preferences; it falls back to an unsaved
    instance carrying the defaults when the user never saved any.
    """

    __tablename__ = "user_sync_prefs"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
    )
    gmail_query: Mapped[str] = mapped_column(
        Text,
        default=DEFAULT_GMAIL_QUERY,
    )
    gmail_label_includes: Mapped[list[str]] = mapped_column(
        JSONType,
        default=list,
    )
    gmail_label_excludes: Mapped[list[str]] = mapped_column(
        JSONType,
        default=lambda: list(DEFAULT_GMAIL_LABEL_EXCLUDES),
    )
    calendar_include_organizer_self: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        comment="When true, skip events organized by someone else",
    )
    calendar_include_private: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
    )
    calendar_time_window_days: Mapped[int] = mapped_column(
        Integer,
        default=DEFAULT_CALENDAR_TIME_WINDOW_DAYS,
    )
    calendar_future_days: Mapped[int | None] = mapped_column(
        Integer,
        default=DEFAULT_CALENDAR_FUTURE_DAYS,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<UserSyncPrefs(user={self.user_id})>"

    @classmethod
    def defaults(cls, user_id: uuid.UUID) -> "UserSyncPrefs":
        """Build an unsaved preferences row with every default filled in."""
        return cls(
            user_id=user_id,
            gmail_query=DEFAULT_GMAIL_QUERY,
            gmail_label_includes=[],
            gmail_label_excludes=list(DEFAULT_GMAIL_LABEL_EXCLUDES),
            calendar_include_organizer_self=True,
            calendar_include_private=False,
            calendar_time_window_days=DEFAULT_CALENDAR_TIME_WINDOW_DAYS,
            calendar_future_days=DEFAULT_CALENDAR_FUTURE_DAYS,
        )

    @classmethod
    def for_user(cls, db: Session, user_id: uuid.UUID) -> "UserSyncPrefs":
        """
        Get the user's preferences without creating a row.

        Args:
            db: Database session
            user_id: Owner of the preferences

        Returns:
            The stored row, or an unsaved instance with defaults
        """
        prefs = db.get(cls, user_id)
        if prefs is None:
            return cls.defaults(user_id)
        return prefs
