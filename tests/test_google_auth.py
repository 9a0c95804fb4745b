"""
Tests for Google Auth service.

These tests use mocking to avoid requiring actual Google credentials.
"""

import pytest
from unittest.mock import patch, MagicMock
from datetime import datetime, timezone

from app.services.google_auth import (
    GoogleAuthService,
    GoogleAuthConfigError,
    GoogleAuthTokenError,
    SERVICE_SCOPES,
    get_google_auth_service,
    to_aware_expiry,
    to_naive_expiry,
)


@pytest.fixture
def auth_service():
    """Create a configured auth service."""
    return GoogleAuthService()


class TestGoogleAuthServiceInit:
    """Test GoogleAuthService initialization."""

    def test_init_with_config(self):
        """Test initialization with valid config."""
        service = get_google_auth_service()
        assert service.settings.google_client_id == "test-client-id.apps.googleusercontent.com"

    def test_init_without_config(self, monkeypatch):
        """Test initialization without config raises error."""
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "")

        from app.config import get_settings
        get_settings.cache_clear()

        with pytest.raises(GoogleAuthConfigError) as exc_info:
            GoogleAuthService()
        assert "not configured" in str(exc_info.value)

    def test_redirect_uri_per_service(self, auth_service):
        assert auth_service.redirect_uri("gmail").endswith("/google/gmail/callback")
        assert auth_service.redirect_uri("calendar").endswith("/google/calendar/callback")

    def test_unknown_service(self, auth_service):
        with pytest.raises(GoogleAuthConfigError):
            auth_service.redirect_uri("drive")


class TestAuthorizationUrl:
    """Test authorization URL generation."""

    def test_get_authorization_url(self, auth_service):
        """Test generating authorization URL."""
        url, state = auth_service.get_authorization_url("gmail")

        assert "accounts.google.com" in url
        assert "client_id=test-client-id" in url
        assert "access_type=offline" in url
        assert state is not None

    def test_get_authorization_url_with_state(self, auth_service):
        """Test generating authorization URL with custom state."""
        custom_state = "my-custom-state-123"
        url, state = auth_service.get_authorization_url("calendar", state=custom_state)

        assert state == custom_state
        assert f"state={custom_state}" in url

    def test_scopes_are_limited_to_the_service(self, auth_service):
        """A Gmail consent never asks for Calendar and vice versa."""
        gmail_url, _ = auth_service.get_authorization_url("gmail")
        calendar_url, _ = auth_service.get_authorization_url("calendar")

        assert "gmail.readonly" in gmail_url
        assert "calendar" not in gmail_url.split("scope=")[1].split("&")[0]
        assert "calendar.readonly" in calendar_url
        assert "gmail" not in calendar_url.split("scope=")[1].split("&")[0]


class TestCodeExchange:
    """Test authorization code exchange."""

    @patch("app.services.google_auth.Flow")
    def test_exchange_code_success(self, mock_flow_class, auth_service):
        """Test successful code exchange."""
        mock_flow = MagicMock()
        mock_flow_class.from_client_config.return_value = mock_flow

        mock_credentials = MagicMock()
        mock_credentials.token = "access-token-123"
        mock_credentials.refresh_token = "refresh-token-456"
        mock_credentials.scopes = ["https://www.googleapis.com/auth/gmail.readonly"]
        mock_credentials.expiry = datetime(2025, 12, 8, 12, 0, 0)
        mock_flow.credentials = mock_credentials

        result = auth_service.exchange_code("gmail", "auth-code-xyz")

        mock_flow.fetch_token.assert_called_once_with(code="auth-code-xyz")
        assert result["access_token"] == "access-token-123"
        assert result["refresh_token"] == "refresh-token-456"
        assert result["expiry"] == datetime(2025, 12, 8, 12, 0, 0, tzinfo=timezone.utc)
        assert result["scopes"] == ["https://www.googleapis.com/auth/gmail.readonly"]

    @patch("app.services.google_auth.Flow")
    def test_exchange_code_failure(self, mock_flow_class, auth_service):
        """Test code exchange failure."""
        mock_flow = MagicMock()
        mock_flow_class.from_client_config.return_value = mock_flow
        mock_flow.fetch_token.side_effect = Exception("Invalid code")

        with pytest.raises(GoogleAuthTokenError) as exc_info:
            auth_service.exchange_code("gmail", "invalid-code")
        assert "Invalid code" in str(exc_info.value)

    @patch("app.services.google_auth.Flow")
    def test_exchange_without_access_token(self, mock_flow_class, auth_service):
        mock_flow = MagicMock()
        mock_flow_class.from_client_config.return_value = mock_flow
        mock_flow.credentials.token = None

        with pytest.raises(GoogleAuthTokenError, match="no access token"):
            auth_service.exchange_code("calendar", "code")


class TestBuildCredentials:
    """Test Credentials construction from stored tokens."""

    def test_build_credentials(self, auth_service):
        credentials = auth_service.build_credentials(
            "calendar",
            "ya29.access",
            "1//refresh",
            datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc),
        )

        assert credentials.token == "ya29.access"
        assert credentials.refresh_token == "1//refresh"
        assert credentials.client_id == "test-client-id.apps.googleusercontent.com"
        assert credentials.scopes == SERVICE_SCOPES["calendar"]
        assert credentials.expiry == datetime(2030, 1, 1, 9, 0)


class TestExpiryConversion:
    """Test naive/aware expiry helpers."""

    def test_to_naive(self):
        aware = datetime(2030, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert to_naive_expiry(aware) == datetime(2030, 1, 1, 10, 0)
        assert to_naive_expiry(None) is None

    def test_to_aware(self):
        assert to_aware_expiry(datetime(2030, 1, 1)) == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert to_aware_expiry(None) is None


class TestServiceScopes:
    """Test per-service scopes."""

    def test_gmail_scope(self):
        assert SERVICE_SCOPES["gmail"] == ["https://www.googleapis.com/auth/gmail.readonly"]

    def test_calendar_scope(self):
        assert SERVICE_SCOPES["calendar"] == ["https://www.googleapis.com/auth/calendar.readonly"]
