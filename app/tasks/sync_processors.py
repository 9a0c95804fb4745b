"""
Gmail / Calendar ingestion passes.

One call = one sync run for one user: resolve preferences, list candidates,
walk them in chunks until exhausted, capped or out of time, persist raw
events, then hand the batch to normalization through a follow-up job.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.models import Job, JobKind, UserSyncPrefs, IntegrationService, utcnow
from app.services.calendar_fetcher import (
    calendar_window,
    event_occurred_at,
    list_calendar_events,
    passes_event_filters,
)
from app.services.gmail_fetcher import (
    MalformedPayloadError,
    build_gmail_query,
    fetch_gmail_message,
    list_gmail_message_ids,
    message_occurred_at,
    passes_label_filters,
    query_window_days,
)
from app.services.google_clients import (
    GoogleClients,
    get_calendar_client,
    get_gmail_client,
)
from app.services.job_queue import enqueue
from app.services.rate_limiter import GoogleApiRateLimiter
from app.services.raw_events import insert_raw_event, latest_occurred_at
from app.utils.log_context import sync_log_context

logger = logging.getLogger(__name__)

GMAIL = IntegrationService.GMAIL.value
CALENDAR = IntegrationService.CALENDAR.value
SYNC_TYPE = "service_sync"


@dataclass
class SyncStats:
    """Counters for one sync run."""

    total_found: int = 0
    processed: int = 0
    inserted: int = 0
    skipped: int = 0
    errors: int = 0
    batch_id: UUID | None = None
    deadline_hit: bool = False
    capped: bool = False
    pages: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["batch_id"] = str(self.batch_id) if self.batch_id else None
        return data


def resolve_batch_id(job: Job | Any) -> UUID:
    """Batch id from the job payload, then the job row, else a fresh one."""
    payload = getattr(job, "payload", None) or {}
    raw = payload.get("batchId")
    if raw:
        try:
            return UUID(str(raw))
        except ValueError:
            logger.warning("Ignoring non-UUID batchId %r in job payload", raw)
    batch_id = getattr(job, "batch_id", None)
    if batch_id:
        return batch_id if isinstance(batch_id, UUID) else UUID(str(batch_id))
    return uuid.uuid4()


def _chunks(items: list, size: int):
    size = max(1, size)
    for start in range(0, len(items), size):
        yield start, items[start:start + size]


def _gmail_since_bound(
    db: Session,
    user_id: UUID,
    base_query: str | None,
    now: datetime,
    settings: Settings,
) -> datetime:
    window_days = query_window_days(base_query) or settings.gmail_default_days_back
    since = now - timedelta(days=window_days)
    latest = latest_occurred_at(db, user_id, GMAIL)
    if latest is not None and latest > since:
        since = latest
    return since


def _calendar_since_bound(db: Session, user_id: UUID, now: datetime) -> datetime | None:
    latest = latest_occurred_at(db, user_id, CALENDAR)
    if latest is None:
        return None
    # Stored future events must not hide upcoming ones from the next run
    return min(latest, now)


async def run_gmail_sync(
    db: Session,
    job: Job | Any,
    user_id: UUID,
    clients: GoogleClients | Any | None = None,
    *,
    settings: Settings | None = None,
    clock: Callable[[], float] | None = None,
    limiter: GoogleApiRateLimiter | None = None,
) -> SyncStats:
    """
    Ingest Gmail messages for one user into raw_events.

    Args:
        db: Database session
        job: The job being run (payload["batchId"] or batch_id is reused)
        user_id: Owner of the mailbox
        clients: Pre-built clients exposing `.gmail`; resolved from the store if None
        settings: Overrides for caps, deadline and chunking
        clock: Monotonic clock for the deadline

    Returns:
        SyncStats for the run

    Raises:
        GoogleNotConnectedError, GoogleServiceNotApprovedError,
        CredentialBackfillError: Credentials could not be resolved
    """
    settings = settings or get_settings()
    clock = clock or time.monotonic
    deadline = clock() + settings.sync_deadline_seconds

    batch_id = resolve_batch_id(job)
    job_id = getattr(job, "id", None)
    stats = SyncStats(batch_id=batch_id)
    log_ctx = sync_log_context(user_id, GMAIL, batch_id, job_id)
    logger.info("Gmail sync started", extra=log_ctx)

    prefs = UserSyncPrefs.for_user(db, user_id)
    client = clients.gmail if clients is not None else get_gmail_client(db, user_id)

    base_query = prefs.gmail_query
    includes = prefs.gmail_label_includes or []
    excludes = prefs.gmail_label_excludes or []
    query = build_gmail_query(base_query, includes, excludes)

    ids, stats.pages = await list_gmail_message_ids(
        client,
        query,
        user_id,
        page_size=settings.gmail_page_size,
        limit=settings.sync_max_items + 1,
        limiter=limiter,
    )
    stats.total_found = len(ids)
    if len(ids) > settings.sync_max_items:
        stats.capped = True
        ids = ids[:settings.sync_max_items]

    now = utcnow()
    since = _gmail_since_bound(db, user_id, base_query, now, settings)

    for start, chunk in _chunks(ids, settings.sync_chunk_size):
        if clock() >= deadline:
            stats.deadline_hit = True
            logger.warning(
                "Gmail sync deadline reached after %d of %d messages",
                start,
                len(ids),
                extra=log_ctx,
            )
            break

        results = await asyncio.gather(
            *(fetch_gmail_message(client, message_id, user_id, limiter=limiter) for message_id in chunk),
            return_exceptions=True,
        )

        for message_id, result in zip(chunk, results):
            stats.processed += 1
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                stats.errors += 1
                stats.skipped += 1
                failure = "Malformed" if isinstance(result, MalformedPayloadError) else "Failed"
                logger.warning(
                    "%s Gmail message %s skipped: %s",
                    failure,
                    message_id,
                    result,
                    extra=log_ctx,
                )
                continue

            label_ids = result.get("labelIds") or []
            if not passes_label_filters(label_ids, includes, excludes):
                stats.skipped += 1
                continue

            occurred_at = message_occurred_at(result, now)
            if occurred_at < since:
                stats.skipped += 1
                continue

            insert_raw_event(
                db,
                user_id=user_id,
                provider=GMAIL,
                payload=result,
                occurred_at=occurred_at,
                batch_id=batch_id,
                source_meta={
                    "labelIds": label_ids,
                    "fetchedAt": datetime.now(timezone.utc).isoformat(),
                    "matchedQuery": base_query,
                    "syncType": SYNC_TYPE,
                },
                source_id=result.get("id") or message_id,
                commit=False,
            )
            stats.inserted += 1

        db.commit()
        if start + len(chunk) < len(ids) and settings.sync_chunk_pause_seconds > 0:
            await asyncio.sleep(settings.sync_chunk_pause_seconds)

    enqueue(
        db,
        JobKind.NORMALIZE_EMAIL,
        {"batchId": str(batch_id), "provider": GMAIL, "inserted": stats.inserted},
        user_id,
        batch_id,
    )
    logger.info(
        "Gmail sync finished: %d found, %d inserted, %d skipped, %d errors",
        stats.total_found,
        stats.inserted,
        stats.skipped,
        stats.errors,
        extra={**log_ctx, "deadline_hit": stats.deadline_hit, "capped": stats.capped},
    )
    return stats


async def run_calendar_sync(
    db: Session,
    job: Job | Any,
    user_id: UUID,
    clients: GoogleClients | Any | None = None,
    *,
    settings: Settings | None = None,
    clock: Callable[[], float] | None = None,
    limiter: GoogleApiRateLimiter | None = None,
) -> SyncStats:
    """
    Ingest primary-calendar events for one user into raw_events.

    Same contract as run_gmail_sync; events come complete from the list
    call, so there is no per-item detail fetch.
    """
    settings = settings or get_settings()
    clock = clock or time.monotonic
    deadline = clock() + settings.sync_deadline_seconds

    batch_id = resolve_batch_id(job)
    job_id = getattr(job, "id", None)
    stats = SyncStats(batch_id=batch_id)
    log_ctx = sync_log_context(user_id, CALENDAR, batch_id, job_id)
    logger.info("Calendar sync started", extra=log_ctx)

    prefs = UserSyncPrefs.for_user(db, user_id)
    client = clients.calendar if clients is not None else get_calendar_client(db, user_id)

    now = utcnow()
    time_min, time_max = calendar_window(prefs, now, settings)
    events, stats.pages = await list_calendar_events(
        client,
        user_id,
        time_min,
        time_max,
        page_size=settings.calendar_page_size,
        limit=settings.sync_max_items + 1,
        limiter=limiter,
    )
    stats.total_found = len(events)
    if len(events) > settings.sync_max_items:
        stats.capped = True
        events = events[:settings.sync_max_items]

    since = _calendar_since_bound(db, user_id, now)
    include_self = bool(prefs.calendar_include_organizer_self)
    include_private = bool(prefs.calendar_include_private)

    for start, chunk in _chunks(events, settings.sync_chunk_size):
        if clock() >= deadline:
            stats.deadline_hit = True
            logger.warning(
                "Calendar sync deadline reached after %d of %d events",
                start,
                len(events),
                extra=log_ctx,
            )
            break

        for event in chunk:
            stats.processed += 1
            event_id = event.get("id")
            if not event_id:
                stats.errors += 1
                stats.skipped += 1
                logger.warning("Malformed calendar event skipped (no id)", extra=log_ctx)
                continue

            if not passes_event_filters(event, include_self, include_private):
                stats.skipped += 1
                continue

            occurred_at = event_occurred_at(event, now)
            if since is not None and occurred_at < since:
                stats.skipped += 1
                continue

            insert_raw_event(
                db,
                user_id=user_id,
                provider=CALENDAR,
                payload=event,
                occurred_at=occurred_at,
                batch_id=batch_id,
                source_meta={
                    "calendarId": "primary",
                    "fetchedAt": datetime.now(timezone.utc).isoformat(),
                    "timeMin": time_min.isoformat(),
                    "timeMax": time_max.isoformat(),
                    "syncType": SYNC_TYPE,
                },
                source_id=event_id,
                commit=False,
            )
            stats.inserted += 1

        db.commit()
        if start + len(chunk) < len(events) and settings.sync_chunk_pause_seconds > 0:
            await asyncio.sleep(settings.sync_chunk_pause_seconds)

    enqueue(
        db,
        JobKind.NORMALIZE_EVENT,
        {"batchId": str(batch_id), "provider": CALENDAR, "inserted": stats.inserted},
        user_id,
        batch_id,
    )
    logger.info(
        "Calendar sync finished: %d found, %d inserted, %d skipped, %d errors",
        stats.total_found,
        stats.inserted,
        stats.skipped,
        stats.errors,
        extra={**log_ctx, "deadline_hit": stats.deadline_hit, "capped": stats.capped},
    )
    return stats
