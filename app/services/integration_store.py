"""
Token store for per-service Google OAuth credentials.

Reads and writes the user_integrations table. Tokens crossing the
get_raw_integration_data/update_raw_tokens boundary are always ciphertext;
decrypt_tokens() is the only place plaintext comes out, and it re-encrypts
legacy plaintext rows on the way.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import UserIntegration, GOOGLE_PROVIDER, ensure_utc
from app.utils.log_context import mask_user_id
from app.services.encryption import (
    EncryptionError,
    EncryptionService,
    get_encryption_service,
    is_encrypted_token,
)

logger = logging.getLogger(__name__)


class IntegrationStoreError(Exception):
    """Base exception for credential store errors."""
    pass


class CredentialBackfillError(IntegrationStoreError):
    """Raised when a legacy plaintext token could not be re-encrypted and saved."""
    pass


@dataclass
class StoredTokens:
    """Decrypted credentials for one service."""
    service: str
    access_token: str
    refresh_token: str | None
    expiry_date: datetime | None


class IntegrationStore:
    """
    Access to encrypted OAuth credentials.

    One row per (user, provider, service); rows are created on consent and
    updated on token rotation or re-encryption, never deleted here.
    """

    def __init__(self, db: Session, encryption: EncryptionService | None = None):
        self.db = db
        self._encryption = encryption

    @property
    def encryption(self) -> EncryptionService:
        if self._encryption is None:
            self._encryption = get_encryption_service()
        return self._encryption

    def get_raw_integration_data(
        self,
        user_id: UUID,
        provider: str = GOOGLE_PROVIDER,
    ) -> list[UserIntegration]:
        """Return every stored service row for the user and provider."""
        return (
            self.db.query(UserIntegration)
            .filter_by(user_id=user_id, provider=provider)
            .all()
        )

    def update_raw_tokens(
        self,
        user_id: UUID,
        provider: str,
        service: str,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        expiry_date: datetime | None = None,
    ) -> UserIntegration:
        """
        Update already-encrypted token values; omitted fields keep their value.

        Raises:
            ValueError: If a token value is not ciphertext
            IntegrationStoreError: If the row does not exist
        """
        for value in (access_token, refresh_token):
            if value is not None and not is_encrypted_token(value):
                raise ValueError("update_raw_tokens only accepts encrypted tokens")

        row = (
            self.db.query(UserIntegration)
            .filter_by(user_id=user_id, provider=provider, service=service)
            .first()
        )
        if row is None:
            raise IntegrationStoreError(
                f"No {provider}/{service} integration for user {user_id}"
            )

        if access_token is not None:
            row.access_token = access_token
        if refresh_token is not None:
            row.refresh_token = refresh_token
        if expiry_date is not None:
            row.expiry_date = expiry_date
        self.db.commit()
        return row

    def store_user_tokens(
        self,
        user_id: UUID,
        service: str,
        access_token: str,
        refresh_token: str | None = None,
        expiry_date: datetime | None = None,
        provider: str = GOOGLE_PROVIDER,
    ) -> UserIntegration:
        """
        Encrypt and upsert tokens returned by an OAuth consent.

        Google omits the refresh token on repeat consents; the stored one is kept.
        """
        row = (
            self.db.query(UserIntegration)
            .filter_by(user_id=user_id, provider=provider, service=service)
            .first()
        )
        encrypted_access = self.encryption.encrypt_token(access_token)
        encrypted_refresh = (
            self.encryption.encrypt_token(refresh_token) if refresh_token else None
        )

        if row is None:
            row = UserIntegration(
                user_id=user_id,
                provider=provider,
                service=service,
                access_token=encrypted_access,
                refresh_token=encrypted_refresh,
                expiry_date=expiry_date,
            )
            self.db.add(row)
        else:
            row.access_token = encrypted_access
            if encrypted_refresh:
                row.refresh_token = encrypted_refresh
            row.expiry_date = expiry_date

        self.db.commit()
        logger.info(
            "Stored %s tokens for user %s", service, mask_user_id(user_id)
        )
        return row

    def decrypt_tokens(self, row: UserIntegration) -> StoredTokens:
        """
        Decrypt a row's tokens, re-encrypting legacy plaintext first.

        Already-encrypted values are never rewritten.

        Raises:
            DecryptionError: If stored ciphertext is corrupted
            CredentialBackfillError: If re-encrypting a plaintext token fails
        """
        backfill: dict[str, str] = {}
        if not is_encrypted_token(row.access_token):
            backfill["access_token"] = row.access_token
        if row.refresh_token and not is_encrypted_token(row.refresh_token):
            backfill["refresh_token"] = row.refresh_token

        if backfill:
            self._backfill(row, backfill)

        access_token = self.encryption.decrypt_token(row.access_token)
        refresh_token = (
            self.encryption.decrypt_token(row.refresh_token) if row.refresh_token else None
        )
        return StoredTokens(
            service=row.service,
            access_token=access_token,
            refresh_token=refresh_token,
            expiry_date=ensure_utc(row.expiry_date),
        )

    def _backfill(self, row: UserIntegration, plaintext: dict[str, str]) -> None:
        try:
            encrypted = {
                field: self.encryption.encrypt_token(value)
                for field, value in plaintext.items()
            }
            self.update_raw_tokens(row.user_id, row.provider, row.service, **encrypted)
        except (EncryptionError, SQLAlchemyError, IntegrationStoreError) as e:
            self.db.rollback()
            raise CredentialBackfillError(
                f"Failed to re-encrypt {row.service} tokens: {e}"
            ) from e

        logger.info(
            "Re-encrypted legacy %s token(s) for user %s (%s)",
            row.service,
            mask_user_id(row.user_id),
            ", ".join(sorted(plaintext)),
        )
