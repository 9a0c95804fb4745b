"""
Tests for IntegrationStore: encrypted writes and the legacy backfill read path.
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.models import UserIntegration, GOOGLE_PROVIDER
from app.services.encryption import get_encryption_service, is_encrypted_token
from app.services.integration_store import (
    CredentialBackfillError,
    IntegrationStore,
    IntegrationStoreError,
)


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def store(db_session):
    return IntegrationStore(db_session)


def _row(db_session, user_id, service="gmail", access="ya29.plain", refresh="1//plain"):
    row = UserIntegration(
        user_id=user_id,
        provider=GOOGLE_PROVIDER,
        service=service,
        access_token=access,
        refresh_token=refresh,
    )
    db_session.add(row)
    db_session.commit()
    return row


class TestStoreUserTokens:
    """Test the consent write path."""

    def test_tokens_are_encrypted_at_rest(self, store, user_id):
        row = store.store_user_tokens(user_id, "gmail", "ya29.access", "1//refresh")

        assert is_encrypted_token(row.access_token)
        assert is_encrypted_token(row.refresh_token)
        assert "ya29" not in row.access_token

    def test_repeat_consent_without_refresh_keeps_old_one(self, store, user_id):
        first = store.store_user_tokens(user_id, "gmail", "ya29.one", "1//refresh")
        original_refresh = first.refresh_token

        second = store.store_user_tokens(user_id, "gmail", "ya29.two")

        assert second.refresh_token == original_refresh
        assert store.decrypt_tokens(second).access_token == "ya29.two"

    def test_services_are_separate_rows(self, store, user_id):
        store.store_user_tokens(user_id, "gmail", "ya29.gmail")
        store.store_user_tokens(user_id, "calendar", "ya29.calendar")

        rows = store.get_raw_integration_data(user_id, GOOGLE_PROVIDER)
        assert sorted(r.service for r in rows) == ["calendar", "gmail"]


class TestUpdateRawTokens:
    """Test the ciphertext-only update path."""

    def test_rejects_plaintext(self, store, db_session, user_id):
        _row(db_session, user_id)

        with pytest.raises(ValueError, match="encrypted"):
            store.update_raw_tokens(user_id, GOOGLE_PROVIDER, "gmail", access_token="ya29.plain")

    def test_missing_row_raises(self, store, user_id):
        ciphertext = get_encryption_service().encrypt_token("ya29.x")

        with pytest.raises(IntegrationStoreError):
            store.update_raw_tokens(user_id, GOOGLE_PROVIDER, "gmail", access_token=ciphertext)

    def test_omitted_fields_keep_their_value(self, store, user_id):
        row = store.store_user_tokens(user_id, "gmail", "ya29.a", "1//r")
        original_refresh = row.refresh_token
        expiry = datetime(2030, 1, 1, tzinfo=timezone.utc)

        store.update_raw_tokens(
            user_id,
            GOOGLE_PROVIDER,
            "gmail",
            access_token=get_encryption_service().encrypt_token("ya29.b"),
            expiry_date=expiry,
        )

        tokens = store.decrypt_tokens(row)
        assert tokens.access_token == "ya29.b"
        assert tokens.refresh_token == "1//r"
        assert row.refresh_token == original_refresh
        assert tokens.expiry_date == expiry


class TestDecryptTokens:
    """Test the read path including legacy re-encryption."""

    def test_plaintext_row_is_backfilled(self, store, db_session, user_id):
        row = _row(db_session, user_id)

        tokens = store.decrypt_tokens(row)

        assert tokens.access_token == "ya29.plain"
        assert tokens.refresh_token == "1//plain"
        db_session.expire_all()
        stored = db_session.get(UserIntegration, (user_id, GOOGLE_PROVIDER, "gmail"))
        assert is_encrypted_token(stored.access_token)
        assert is_encrypted_token(stored.refresh_token)

    def test_encrypted_row_is_not_rewritten(self, store, user_id):
        row = store.store_user_tokens(user_id, "gmail", "ya29.access", "1//refresh")
        before = (row.access_token, row.refresh_token)

        store.decrypt_tokens(row)
        store.decrypt_tokens(row)

        assert (row.access_token, row.refresh_token) == before

    def test_partial_plaintext_only_backfills_that_field(self, store, db_session, user_id):
        encrypted_refresh = get_encryption_service().encrypt_token("1//refresh")
        row = _row(db_session, user_id, refresh=encrypted_refresh)

        tokens = store.decrypt_tokens(row)

        assert tokens.refresh_token == "1//refresh"
        assert row.refresh_token == encrypted_refresh
        assert is_encrypted_token(row.access_token)

    def test_backfill_failure_raises(self, store, db_session, user_id):
        row = _row(db_session, user_id)

        with patch.object(
            store,
            "update_raw_tokens",
            side_effect=OperationalError("UPDATE", {}, Exception("db down")),
        ):
            with pytest.raises(CredentialBackfillError):
                store.decrypt_tokens(row)

    def test_naive_expiry_is_returned_as_utc(self, store, db_session, user_id):
        row = store.store_user_tokens(
            user_id,
            "gmail",
            "ya29.a",
            expiry_date=datetime(2030, 6, 1, 12, 0),
        )

        tokens = store.decrypt_tokens(row)
        assert tokens.expiry_date.tzinfo is not None
        assert tokens.expiry_date == datetime(2030, 6, 1, 12, 0, tzinfo=timezone.utc)
