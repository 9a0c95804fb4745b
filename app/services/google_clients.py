"""
Authenticated Gmail / Calendar clients built from stored credentials.

Each client wraps a googleapiclient Resource. Calls go through
GoogleServiceClient.execute(), which persists any token rotation the
call caused before handing the result back.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import GOOGLE_PROVIDER, IntegrationService
from app.services.google_auth import GoogleAuthService, get_google_auth_service, to_aware_expiry
from app.services.integration_store import (
    CredentialBackfillError,
    IntegrationStore,
)
from app.services.retry import call_with_retry
from app.utils.log_context import mask_user_id

logger = logging.getLogger(__name__)

__all__ = [
    "CredentialBackfillError",
    "GoogleClientError",
    "GoogleClients",
    "GoogleNotConnectedError",
    "GoogleServiceClient",
    "GoogleServiceNotApprovedError",
    "get_calendar_client",
    "get_gmail_client",
    "get_google_clients",
]

SERVICE_APIS = {
    IntegrationService.GMAIL.value: ("gmail", "v1"),
    IntegrationService.CALENDAR.value: ("calendar", "v3"),
}


class GoogleClientError(Exception):
    """Base exception for client construction errors."""

    classification = "error"


class GoogleNotConnectedError(GoogleClientError):
    """No Google credentials stored at all; the user must connect."""

    classification = "unauthenticated"

    def __init__(self, user_id: UUID | str):
        self.user_id = user_id
        super().__init__("Google account not connected")


class GoogleServiceNotApprovedError(GoogleClientError):
    """Credentials exist but not for the requested service; the user must re-consent."""

    classification = "forbidden"

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"Google {service} access not approved")


class GoogleServiceClient:
    """
    One service's API resource plus the credentials behind it.

    Example:
        request = client.service.users().messages().list(userId="me")
        response = await client.execute(request)
    """

    def __init__(
        self,
        store: IntegrationStore,
        user_id: UUID,
        service_name: str,
        credentials: Credentials,
        service: Any,
        provider: str = GOOGLE_PROVIDER,
    ):
        self.store = store
        self.user_id = user_id
        self.service_name = service_name
        self.provider = provider
        self.credentials = credentials
        self.service = service
        self._persisted = self._current_tokens()

    def _current_tokens(self) -> tuple[str | None, str | None, datetime | None]:
        return (
            self.credentials.token,
            self.credentials.refresh_token,
            to_aware_expiry(self.credentials.expiry),
        )

    def _authorized_http(self, timeout: float | None = None) -> AuthorizedHttp:
        # httplib2.Http is not thread-safe; every call gets its own.
        # The socket timeout ends a hung request inside its worker thread.
        if timeout is None:
            timeout = get_settings().google_call_timeout_seconds
        return AuthorizedHttp(self.credentials, http=httplib2.Http(timeout=timeout))

    async def execute(
        self,
        request: Any,
        *,
        attempts: int | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Execute a googleapiclient request with retry, then persist rotated tokens.

        Args:
            request: HttpRequest built from self.service
            attempts: Override for the retry helper's attempt count
            timeout: Override for the per-call timeout

        Returns:
            The decoded API response
        """
        try:
            result = await call_with_retry(
                request.execute,
                http=self._authorized_http(timeout),
                attempts=attempts,
                timeout=timeout,
            )
        except Exception:
            try:
                self.persist_rotated_tokens()
            except Exception:
                logger.exception(
                    "Failed to persist rotated %s tokens for user %s",
                    self.service_name,
                    mask_user_id(self.user_id),
                )
            raise
        self.persist_rotated_tokens()
        return result

    def persist_rotated_tokens(self) -> bool:
        """
        Encrypt and store tokens the SDK refreshed since the last check.

        Values the rotation did not change keep their stored value.

        Returns:
            True if anything was written
        """
        token, refresh_token, expiry = self._current_tokens()
        last_token, last_refresh, last_expiry = self._persisted

        changes: dict[str, Any] = {}
        if token and token != last_token:
            changes["access_token"] = self.store.encryption.encrypt_token(token)
        if refresh_token and refresh_token != last_refresh:
            changes["refresh_token"] = self.store.encryption.encrypt_token(refresh_token)
        if expiry and expiry != last_expiry:
            changes["expiry_date"] = expiry

        if not changes:
            return False

        self.store.update_raw_tokens(
            self.user_id,
            self.provider,
            self.service_name,
            **changes,
        )
        self._persisted = (
            token or last_token,
            refresh_token or last_refresh,
            expiry or last_expiry,
        )
        logger.info(
            "Persisted rotated %s token(s) for user %s (%s)",
            self.service_name,
            mask_user_id(self.user_id),
            ", ".join(sorted(changes)),
        )
        return True


@dataclass
class GoogleClients:
    gmail: GoogleServiceClient
    calendar: GoogleServiceClient


def _build_service(service_name: str, credentials: Credentials) -> Any:
    api, version = SERVICE_APIS[service_name]
    return build(api, version, credentials=credentials, cache_discovery=False)


def resolve_clients(
    db: Session,
    user_id: UUID,
    services: list[str],
    store: IntegrationStore | None = None,
    auth: GoogleAuthService | None = None,
) -> dict[str, GoogleServiceClient]:
    """
    Build one client per required service.

    Every required service is decrypted (and backfilled) before any client
    is returned, so a backfill failure on one service issues no clients.

    Raises:
        GoogleNotConnectedError: No Google rows for the user
        GoogleServiceNotApprovedError: A required service has no row
        CredentialBackfillError: Re-encrypting a legacy token failed
    """
    store = store or IntegrationStore(db)
    rows = store.get_raw_integration_data(user_id, GOOGLE_PROVIDER)
    if not rows:
        raise GoogleNotConnectedError(user_id)

    by_service = {row.service: row for row in rows}
    for service_name in services:
        if service_name not in by_service:
            raise GoogleServiceNotApprovedError(service_name)

    auth = auth or get_google_auth_service()
    decrypted = {name: store.decrypt_tokens(by_service[name]) for name in services}

    clients = {}
    for name, tokens in decrypted.items():
        credentials = auth.build_credentials(
            name,
            tokens.access_token,
            tokens.refresh_token,
            tokens.expiry_date,
        )
        clients[name] = GoogleServiceClient(
            store,
            user_id,
            name,
            credentials,
            _build_service(name, credentials),
        )
    return clients


def get_google_clients(db: Session, user_id: UUID) -> GoogleClients:
    """Clients for both Gmail and Calendar; both grants are required."""
    clients = resolve_clients(
        db,
        user_id,
        [IntegrationService.GMAIL.value, IntegrationService.CALENDAR.value],
    )
    return GoogleClients(
        gmail=clients[IntegrationService.GMAIL.value],
        calendar=clients[IntegrationService.CALENDAR.value],
    )


def get_gmail_client(db: Session, user_id: UUID) -> GoogleServiceClient:
    return resolve_clients(db, user_id, [IntegrationService.GMAIL.value])[
        IntegrationService.GMAIL.value
    ]


def get_calendar_client(db: Session, user_id: UUID) -> GoogleServiceClient:
    return resolve_clients(db, user_id, [IntegrationService.CALENDAR.value])[
        IntegrationService.CALENDAR.value
    ]
