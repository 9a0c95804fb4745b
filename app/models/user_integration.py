"""
UserIntegration model for per-service OAuth credentials.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import String, Text, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, utcnow


class IntegrationService(str, Enum):
    """Google services a user can grant independently."""

    GMAIL = "gmail"
    CALENDAR = "calendar"


GOOGLE_PROVIDER = "google"


class UserIntegration(Base):
    """
    OAuth credentials for one (user, provider, service).

    Token columns always hold ciphertext produced by EncryptionService.encrypt_token().
    Rows written before encryption was introduced may still hold plaintext;
    those are re-encrypted on first read (see IntegrationStore).

    A Gmail grant never satisfies a Calendar request: each service has its
    own row and its own consent.
    """

    __tablename__ = "user_integrations"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
    )
    provider: Mapped[str] = mapped_column(
        String(50),
        primary_key=True,
        default=GOOGLE_PROVIDER,
    )
    service: Mapped[str] = mapped_column(
        String(50),
        primary_key=True,
        comment="gmail | calendar",
    )
    access_token: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Fernet-encrypted access token",
    )
    refresh_token: Mapped[str | None] = mapped_column(
        Text,
        comment="Fernet-encrypted refresh token",
    )
    expiry_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
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
        return (
            f"<UserIntegration(user={self.user_id}, provider={self.provider!r}, "
            f"service={self.service!r})>"
        )
