"""
Tests for Google client construction and token rotation persistence.
"""

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.models import UserIntegration, GOOGLE_PROVIDER
from app.services.encryption import get_encryption_service, is_encrypted_token
from app.services.google_clients import (
    CredentialBackfillError,
    GoogleNotConnectedError,
    GoogleServiceClient,
    GoogleServiceNotApprovedError,
    get_calendar_client,
    get_gmail_client,
    get_google_clients,
)
from app.services.integration_store import IntegrationStore


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def mock_build():
    with patch("app.services.google_clients.build") as build:
        build.return_value = MagicMock(name="resource")
        yield build


def _add_row(db_session, user_id, service, access="ya29.access", refresh="1//refresh"):
    encryption = get_encryption_service()
    db_session.add(
        UserIntegration(
            user_id=user_id,
            provider=GOOGLE_PROVIDER,
            service=service,
            access_token=encryption.encrypt_token(access),
            refresh_token=encryption.encrypt_token(refresh) if refresh else None,
        )
    )
    db_session.commit()


class TestClientResolution:
    """Test connection and approval classification."""

    def test_no_rows_is_not_connected(self, db_session, user_id, mock_build):
        with pytest.raises(GoogleNotConnectedError) as exc_info:
            get_gmail_client(db_session, user_id)
        assert exc_info.value.classification == "unauthenticated"
        mock_build.assert_not_called()

    def test_missing_service_is_not_approved(self, db_session, user_id, mock_build):
        _add_row(db_session, user_id, "gmail")

        with pytest.raises(GoogleServiceNotApprovedError) as exc_info:
            get_calendar_client(db_session, user_id)
        assert exc_info.value.service == "calendar"
        assert exc_info.value.classification == "forbidden"

    def test_dual_builder_requires_both_services(self, db_session, user_id, mock_build):
        _add_row(db_session, user_id, "calendar")

        with pytest.raises(GoogleServiceNotApprovedError) as exc_info:
            get_google_clients(db_session, user_id)
        assert exc_info.value.service == "gmail"
        mock_build.assert_not_called()

    def test_builds_both_clients(self, db_session, user_id, mock_build):
        _add_row(db_session, user_id, "gmail", access="ya29.gmail")
        _add_row(db_session, user_id, "calendar", access="ya29.calendar")

        clients = get_google_clients(db_session, user_id)

        assert clients.gmail.credentials.token == "ya29.gmail"
        assert clients.calendar.credentials.token == "ya29.calendar"
        apis = sorted(call.args[:2] for call in mock_build.call_args_list)
        assert apis == [("calendar", "v3"), ("gmail", "v1")]

    def test_credentials_carry_refresh_and_naive_expiry(self, db_session, user_id, mock_build):
        _add_row(db_session, user_id, "gmail")
        row = db_session.get(UserIntegration, (user_id, GOOGLE_PROVIDER, "gmail"))
        row.expiry_date = datetime(2030, 1, 1, 8, 30, tzinfo=timezone.utc)
        db_session.commit()

        client = get_gmail_client(db_session, user_id)

        assert client.credentials.refresh_token == "1//refresh"
        assert client.credentials.expiry == datetime(2030, 1, 1, 8, 30)


class TestBackfillOnBuild:
    """Test legacy plaintext handling during construction."""

    def test_plaintext_is_reencrypted_before_client_is_issued(self, db_session, user_id, mock_build):
        db_session.add(
            UserIntegration(
                user_id=user_id,
                provider=GOOGLE_PROVIDER,
                service="gmail",
                access_token="ya29.legacy",
                refresh_token="1//legacy",
            )
        )
        db_session.commit()

        client = get_gmail_client(db_session, user_id)

        assert client.credentials.token == "ya29.legacy"
        db_session.expire_all()
        row = db_session.get(UserIntegration, (user_id, GOOGLE_PROVIDER, "gmail"))
        assert is_encrypted_token(row.access_token)
        assert is_encrypted_token(row.refresh_token)

    def test_backfill_failure_issues_no_client(self, db_session, user_id, mock_build):
        db_session.add(
            UserIntegration(
                user_id=user_id,
                provider=GOOGLE_PROVIDER,
                service="gmail",
                access_token="ya29.legacy",
            )
        )
        db_session.commit()

        with patch.object(
            IntegrationStore,
            "update_raw_tokens",
            side_effect=OperationalError("UPDATE", {}, Exception("db down")),
        ):
            with pytest.raises(CredentialBackfillError):
                get_gmail_client(db_session, user_id)
        mock_build.assert_not_called()


class RotatingRequest:
    """Request whose execute() refreshes the credentials like google-auth would."""

    def __init__(self, credentials, token=None, refresh_token=None, expiry=None):
        self.credentials = credentials
        self.token = token
        self.refresh_token = refresh_token
        self.expiry = expiry

    def execute(self, http=None):
        if self.token:
            self.credentials.token = self.token
        if self.refresh_token:
            self.credentials.refresh_token = self.refresh_token
        if self.expiry:
            self.credentials.expiry = self.expiry
        return {"ok": True}


class TestTokenRotation:
    """Test the post-call hook that persists refreshed tokens."""

    @pytest.fixture
    def client(self, db_session, user_id):
        store = IntegrationStore(db_session)
        store.store_user_tokens(user_id, "gmail", "ya29.old", "1//old")
        credentials = SimpleNamespace(token="ya29.old", refresh_token="1//old", expiry=None)
        client = GoogleServiceClient(store, user_id, "gmail", credentials, MagicMock())
        with patch.object(GoogleServiceClient, "_authorized_http", return_value=None):
            yield client

    def _stored(self, db_session, user_id):
        db_session.expire_all()
        row = db_session.get(UserIntegration, (user_id, GOOGLE_PROVIDER, "gmail"))
        return IntegrationStore(db_session).decrypt_tokens(row), row

    @pytest.mark.asyncio
    async def test_rotated_access_token_is_persisted(self, client, db_session, user_id):
        new_expiry = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)
        request = RotatingRequest(client.credentials, token="ya29.new", expiry=new_expiry)

        result = await client.execute(request)

        assert result == {"ok": True}
        tokens, row = self._stored(db_session, user_id)
        assert tokens.access_token == "ya29.new"
        assert tokens.refresh_token == "1//old"
        assert is_encrypted_token(row.access_token)
        assert tokens.expiry_date == new_expiry.replace(tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_is_persisted(self, client, db_session, user_id):
        request = RotatingRequest(client.credentials, token="ya29.new", refresh_token="1//new")

        await client.execute(request)

        tokens, _ = self._stored(db_session, user_id)
        assert tokens.access_token == "ya29.new"
        assert tokens.refresh_token == "1//new"

    @pytest.mark.asyncio
    async def test_no_rotation_writes_nothing(self, client):
        client.store.update_raw_tokens = MagicMock()

        await client.execute(RotatingRequest(client.credentials))

        client.store.update_raw_tokens.assert_not_called()

    @pytest.mark.asyncio
    async def test_rotation_is_persisted_even_when_call_fails(self, client, db_session, user_id):
        class FailingAfterRefresh(RotatingRequest):
            def execute(self, http=None):
                super().execute(http)
                raise ValueError("bad request")

        with pytest.raises(ValueError):
            await client.execute(FailingAfterRefresh(client.credentials, token="ya29.new"))

        tokens, _ = self._stored(db_session, user_id)
        assert tokens.access_token == "ya29.new"

    @pytest.mark.asyncio
    async def test_persist_failure_keeps_the_provider_error(self, client):
        class FailingAfterRefresh(RotatingRequest):
            def execute(self, http=None):
                super().execute(http)
                raise ConnectionResetError("provider dropped")

        client.store.update_raw_tokens = MagicMock(
            side_effect=OperationalError("UPDATE", {}, Exception("db down"))
        )

        with pytest.raises(ConnectionResetError):
            await client.execute(
                FailingAfterRefresh(client.credentials, token="ya29.new"), attempts=1
            )

        client.store.update_raw_tokens.assert_called_once()


class TestTransport:
    """Test the per-call HTTP transport."""

    def _client(self, db_session, user_id):
        credentials = SimpleNamespace(token="ya29.t", refresh_token=None, expiry=None)
        return GoogleServiceClient(
            IntegrationStore(db_session), user_id, "gmail", credentials, MagicMock()
        )

    def test_socket_timeout_defaults_to_call_timeout(self, db_session, user_id):
        http = self._client(db_session, user_id)._authorized_http()

        assert http.http.timeout == 10.0

    def test_socket_timeout_follows_override(self, db_session, user_id):
        http = self._client(db_session, user_id)._authorized_http(2.5)

        assert http.http.timeout == 2.5

    def test_each_call_gets_its_own_transport(self, db_session, user_id):
        client = self._client(db_session, user_id)

        assert client._authorized_http().http is not client._authorized_http().http

    @pytest.mark.asyncio
    async def test_execute_passes_timeout_to_transport(self, db_session, user_id):
        client = self._client(db_session, user_id)
        request = MagicMock()
        request.execute.return_value = {"ok": True}

        await client.execute(request, timeout=3.0)

        http = request.execute.call_args.kwargs["http"]
        assert http.http.timeout == 3.0
