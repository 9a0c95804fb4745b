"""
Google sync routes: per-service OAuth consent, preview, approve and
rate-limit status.

The calling user is identified by the X-User-Id header.
"""

import logging
import secrets
import uuid
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.models import (
    GOOGLE_PROVIDER,
    IntegrationService,
    JobKind,
    SyncAction,
    SyncAudit,
    UserSyncPrefs,
)
from app.schemas.google_sync import (
    ApproveResponse,
    CalendarPreviewResponse,
    ConnectedResponse,
    ConnectResponse,
    GmailPreviewResponse,
    RateLimitStatusResponse,
)
from app.services.calendar_fetcher import preview_calendar
from app.services.encryption import EncryptionError
from app.services.gmail_fetcher import preview_gmail
from app.services.google_auth import (
    GoogleAuthConfigError,
    GoogleAuthTokenError,
    get_google_auth_service,
)
from app.services.google_clients import (
    CredentialBackfillError,
    GoogleNotConnectedError,
    GoogleServiceNotApprovedError,
    get_calendar_client,
    get_gmail_client,
)
from app.services.integration_store import IntegrationStore
from app.services.job_queue import enqueue
from app.services.rate_limiter import RateLimitExceededError, google_api_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/google", tags=["google-sync"])

SYNC_JOB_KINDS = {
    IntegrationService.GMAIL: JobKind.GMAIL_SYNC,
    IntegrationService.CALENDAR: JobKind.CALENDAR_SYNC,
}

# Store OAuth states temporarily (in production, use Redis or session store)
_oauth_states: dict[str, tuple[UUID, str]] = {}


def get_current_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> UUID:
    """Resolve the calling user from the X-User-Id header."""
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user id")


def _client_error_to_http(e: Exception) -> HTTPException:
    if isinstance(e, GoogleNotConnectedError):
        return HTTPException(status_code=401, detail="Google account not connected")
    if isinstance(e, GoogleServiceNotApprovedError):
        return HTTPException(
            status_code=403,
            detail=f"Google {e.service} access not granted. Please reconnect.",
        )
    if isinstance(e, RateLimitExceededError):
        return HTTPException(
            status_code=429,
            detail="Google rate limit reached. Please try again later.",
            headers={"Retry-After": str(max(1, int(e.wait_seconds + 0.999)))},
        )
    if isinstance(e, GoogleAuthConfigError):
        return HTTPException(status_code=503, detail=f"Google OAuth not configured: {e}")
    return HTTPException(status_code=500, detail="Google sync failed")


@router.get("/rate-limit/status", response_model=RateLimitStatusResponse)
async def rate_limit_status(user_id: UUID = Depends(get_current_user_id)):
    """Current limiter state for the calling user."""
    return google_api_rate_limiter.get_status(user_id)


@router.get("/{service}/connect", response_model=ConnectResponse)
async def connect_service(
    service: IntegrationService,
    user_id: UUID = Depends(get_current_user_id),
):
    """
    Start the OAuth flow for one service.

    Returns the Google consent URL for that service's scopes only.
    """
    try:
        auth_service = get_google_auth_service()
    except GoogleAuthConfigError as e:
        raise _client_error_to_http(e)

    state = secrets.token_urlsafe(32)
    _oauth_states[state] = (user_id, service.value)
    authorization_url, _ = auth_service.get_authorization_url(service.value, state=state)
    return ConnectResponse(service=service.value, authorization_url=authorization_url, state=state)


@router.get("/{service}/callback", response_model=ConnectedResponse)
async def service_callback(
    service: IntegrationService,
    code: str = Query(..., description="Authorization code from Google"),
    state: str = Query(..., description="State parameter for CSRF protection"),
    error: str | None = Query(None, description="Error from Google if auth failed"),
    db: Session = Depends(get_db),
):
    """
    Handle the OAuth callback for one service.

    Exchanges the code and stores the encrypted tokens for that service.
    """
    if error:
        raise HTTPException(status_code=400, detail=f"Google OAuth error: {error}")

    pending = _oauth_states.pop(state, None)
    if pending is None or pending[1] != service.value:
        raise HTTPException(
            status_code=400,
            detail="Invalid or expired state parameter. Please try again.",
        )
    user_id = pending[0]

    try:
        auth_service = get_google_auth_service()
        tokens = auth_service.exchange_code(service.value, code)
    except GoogleAuthConfigError as e:
        raise _client_error_to_http(e)
    except GoogleAuthTokenError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        IntegrationStore(db).store_user_tokens(
            user_id,
            service.value,
            tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expiry_date=tokens.get("expiry"),
        )
    except EncryptionError as e:
        logger.error(f"Could not store {service.value} tokens: {e}")
        raise HTTPException(status_code=503, detail="Token encryption not configured")

    return ConnectedResponse(
        service=service.value,
        has_refresh_token=bool(tokens.get("refresh_token")),
    )


@router.get("/{service}/preview")
async def preview_service(
    service: IntegrationService,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Sample what a sync would ingest, without persisting anything but an audit row.
    """
    prefs = UserSyncPrefs.for_user(db, user_id)
    try:
        if service == IntegrationService.GMAIL:
            client = get_gmail_client(db, user_id)
            preview = await preview_gmail(client, user_id, prefs)
            response = GmailPreviewResponse(
                count_estimate=preview.count_estimate,
                sample_subjects=preview.sample_subjects,
                query=preview.query,
            )
        else:
            client = get_calendar_client(db, user_id)
            preview = await preview_calendar(client, user_id, prefs)
            response = CalendarPreviewResponse(
                count=preview.count,
                sample_titles=preview.sample_titles,
                time_min=preview.time_min,
                time_max=preview.time_max,
            )
    except (
        GoogleNotConnectedError,
        GoogleServiceNotApprovedError,
        RateLimitExceededError,
        GoogleAuthConfigError,
    ) as e:
        raise _client_error_to_http(e)
    except CredentialBackfillError as e:
        logger.error(f"Credential backfill failed for {service.value}: {e}")
        raise HTTPException(status_code=500, detail="Google sync failed. Please reconnect.")

    SyncAudit.log(db, user_id, service.value, SyncAction.PREVIEW, response.model_dump(mode="json"))
    db.commit()
    return response


@router.post("/{service}/approve", response_model=ApproveResponse)
async def approve_service(
    service: IntegrationService,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Queue a sync for the service and record the approval.

    Returns the batch id shared by the raw events and the follow-up job.
    """
    rows = IntegrationStore(db).get_raw_integration_data(user_id, GOOGLE_PROVIDER)
    if not rows:
        raise _client_error_to_http(GoogleNotConnectedError(user_id))
    if service.value not in {row.service for row in rows}:
        raise _client_error_to_http(GoogleServiceNotApprovedError(service.value))

    batch_id = uuid.uuid4()
    job = enqueue(
        db,
        SYNC_JOB_KINDS[service],
        {"batchId": str(batch_id)},
        user_id,
        batch_id,
    )
    SyncAudit.log(
        db,
        user_id,
        service.value,
        SyncAction.APPROVE,
        {"batchId": str(batch_id), "jobId": str(job.id)},
    )
    db.commit()

    return ApproveResponse(
        service=service.value,
        batch_id=batch_id,
        job_id=job.id,
        status=job.status,
    )
