"""
Google OAuth service for per-service (Gmail / Calendar) consent.

Handles the OAuth flow and conversion between stored tokens and
google.oauth2 Credentials objects.
"""

import os
from datetime import datetime, timezone
from typing import Any

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from app.config import get_settings
from app.models import IntegrationService

# Disable OAuthlib's strict scope checking for incremental authorization
os.environ["OAUTHLIB_RELAX_TOKEN_SCOPE"] = "1"

TOKEN_URI = "https://oauth2.googleapis.com/token"


class GoogleAuthError(Exception):
    """Base exception for Google Auth errors."""

    pass


class GoogleAuthConfigError(GoogleAuthError):
    """Raised when Google OAuth is not configured."""

    pass


class GoogleAuthTokenError(GoogleAuthError):
    """Raised when token operations fail."""

    pass


# Each service is consented separately; a Gmail grant never covers Calendar.
SERVICE_SCOPES: dict[str, list[str]] = {
    IntegrationService.GMAIL.value: [
        "https://www.googleapis.com/auth/gmail.readonly",
    ],
    IntegrationService.CALENDAR.value: [
        "https://www.googleapis.com/auth/calendar.readonly",
    ],
}


class GoogleAuthService:
    """
    Service for managing Google OAuth authentication.

    Handles:
    - OAuth authorization URL generation per service
    - Callback processing and token exchange
    - Building Credentials from stored tokens
    """

    def __init__(self):
        """Initialize the Google Auth service."""
        self.settings = get_settings()

        if not self.settings.google_oauth_configured:
            raise GoogleAuthConfigError(
                "Google OAuth not configured. Set GOOGLE_CLIENT_ID and "
                "GOOGLE_CLIENT_SECRET in .env"
            )

    def redirect_uri(self, service: str) -> str:
        """Callback URL registered for the given service."""
        if service == IntegrationService.GMAIL.value:
            return self.settings.google_gmail_redirect_uri
        if service == IntegrationService.CALENDAR.value:
            return self.settings.google_calendar_redirect_uri
        raise GoogleAuthConfigError(f"Unknown Google service: {service}")

    def _flow(self, service: str) -> Flow:
        if service not in SERVICE_SCOPES:
            raise GoogleAuthConfigError(f"Unknown Google service: {service}")
        redirect_uri = self.redirect_uri(service)
        client_config = {
            "web": {
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": TOKEN_URI,
                "redirect_uris": [redirect_uri],
            }
        }
        return Flow.from_client_config(
            client_config,
            scopes=SERVICE_SCOPES[service],
            redirect_uri=redirect_uri,
            # The callback builds a fresh Flow, so no PKCE verifier survives
            autogenerate_code_verifier=False,
        )

    def get_authorization_url(self, service: str, state: str | None = None) -> tuple[str, str]:
        """
        Generate the Google OAuth authorization URL for one service.

        Args:
            service: "gmail" or "calendar"
            state: Optional state parameter for CSRF protection

        Returns:
            Tuple of (authorization_url, state)
        """
        flow = self._flow(service)
        authorization_url, state = flow.authorization_url(
            access_type="offline",  # Get refresh token
            include_granted_scopes="true",
            prompt="consent",  # Always show consent screen for refresh token
            state=state,
        )
        return authorization_url, state

    def exchange_code(self, service: str, code: str) -> dict[str, Any]:
        """
        Exchange authorization code for tokens.

        Args:
            service: Service the consent was requested for
            code: Authorization code from OAuth callback

        Returns:
            Dictionary with access_token, refresh_token (may be None),
            expiry (aware UTC datetime or None) and scopes

        Raises:
            GoogleAuthTokenError: If code exchange fails
        """
        try:
            flow = self._flow(service)
            flow.fetch_token(code=code)
            credentials = flow.credentials
        except GoogleAuthConfigError:
            raise
        except Exception as e:
            raise GoogleAuthTokenError(f"Failed to exchange authorization code: {e}")

        if not credentials.token:
            raise GoogleAuthTokenError(f"{service} authorization returned no access token")

        return {
            "access_token": credentials.token,
            "refresh_token": credentials.refresh_token,
            "expiry": to_aware_expiry(credentials.expiry),
            "scopes": list(credentials.scopes) if credentials.scopes else [],
        }

    def build_credentials(
        self,
        service: str,
        access_token: str,
        refresh_token: str | None,
        expiry: datetime | None,
    ) -> Credentials:
        """Build a Credentials object from decrypted stored tokens."""
        return Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
            scopes=SERVICE_SCOPES.get(service),
            expiry=to_naive_expiry(expiry),
        )


def to_naive_expiry(expiry: datetime | None) -> datetime | None:
    """google-auth compares expiry against naive UTC datetimes."""
    if expiry is None:
        return None
    if expiry.tzinfo is not None:
        expiry = expiry.astimezone(timezone.utc).replace(tzinfo=None)
    return expiry


def to_aware_expiry(expiry: datetime | None) -> datetime | None:
    """Convert a google-auth naive UTC expiry for storage."""
    if expiry is None:
        return None
    if expiry.tzinfo is None:
        return expiry.replace(tzinfo=timezone.utc)
    return expiry.astimezone(timezone.utc)


def get_google_auth_service() -> GoogleAuthService:
    """
    Get a Google Auth service instance.

    Returns:
        GoogleAuthService instance

    Raises:
        GoogleAuthConfigError: If Google OAuth is not configured
    """
    return GoogleAuthService()
