"""
Calendar fetching: windowed paginated listing, event filters and preview.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from app.config import Settings, get_settings
from app.models import UserSyncPrefs
from app.services.gmail_fetcher import MalformedPayloadError
from app.services.google_clients import GoogleServiceClient
from app.services.rate_limiter import (
    CALENDAR,
    GoogleApiRateLimiter,
    google_api_rate_limiter,
)

logger = logging.getLogger(__name__)

PRIVATE_VISIBILITIES = {"private", "confidential"}


@dataclass
class CalendarPreview:
    count: int
    sample_titles: list[str] = field(default_factory=list)
    time_min: datetime | None = None
    time_max: datetime | None = None


def calendar_window(
    prefs: UserSyncPrefs,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> tuple[datetime, datetime]:
    """
    Time window to list events in: days back from the preferences, days
    ahead from the preferences or the configured default.
    """
    settings = settings or get_settings()
    now = now or datetime.now(timezone.utc)

    days_back = prefs.calendar_time_window_days
    if days_back is None:
        days_back = UserSyncPrefs.defaults(prefs.user_id).calendar_time_window_days
    days_ahead = prefs.calendar_future_days
    if days_ahead is None:
        days_ahead = settings.calendar_default_future_days

    return now - timedelta(days=days_back), now + timedelta(days=days_ahead)


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def passes_event_filters(
    event: dict[str, Any],
    include_organizer_self: bool,
    include_private: bool,
) -> bool:
    """
    Apply the organizer and visibility preferences.

    include_organizer_self keeps only events the user organizes; Google
    sets organizer.self only when it is true.
    """
    if include_organizer_self:
        organizer = event.get("organizer") or {}
        if organizer.get("self") is not True:
            return False
    if not include_private and event.get("visibility") in PRIVATE_VISIBILITIES:
        return False
    return True


def event_occurred_at(event: dict[str, Any], now: datetime | None = None) -> datetime:
    """Start time of the event: start.dateTime, then start.date (all-day), then now."""
    start = event.get("start") or {}

    date_time = start.get("dateTime")
    if date_time:
        try:
            parsed = datetime.fromisoformat(date_time.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        except (TypeError, ValueError):
            pass

    date = start.get("date")
    if date:
        try:
            return datetime.strptime(date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        except (TypeError, ValueError):
            pass

    return now or datetime.now(timezone.utc)


async def list_calendar_events(
    client: GoogleServiceClient,
    user_id: UUID,
    time_min: datetime,
    time_max: datetime,
    page_size: int | None = None,
    calendar_id: str = "primary",
    limit: int | None = None,
    limiter: GoogleApiRateLimiter | None = None,
) -> tuple[list[dict[str, Any]], int]:
    """
    List events in [time_min, time_max), following every nextPageToken.

    Returns:
        Tuple of (events, pages fetched)
    """
    limiter = limiter or google_api_rate_limiter
    page_size = page_size or get_settings().calendar_page_size

    events: list[dict[str, Any]] = []
    pages = 0
    page_token = None

    while True:
        params = {
            "calendarId": calendar_id,
            "timeMin": _rfc3339(time_min),
            "timeMax": _rfc3339(time_max),
            "maxResults": page_size,
            "singleEvents": True,
            "orderBy": "startTime",
        }
        if page_token:
            params["pageToken"] = page_token
        request = client.service.events().list(**params)

        response = await limiter.with_rate_limit(
            user_id, CALENDAR, lambda: client.execute(request)
        )
        pages += 1
        if not isinstance(response, dict):
            raise MalformedPayloadError("Calendar list response is not an object")

        events.extend(item for item in response.get("items", []) or [] if isinstance(item, dict))

        page_token = response.get("nextPageToken")
        if not page_token or (limit is not None and len(events) >= limit):
            break

    if limit is not None:
        events = events[:limit]
    return events, pages


async def preview_calendar(
    client: GoogleServiceClient,
    user_id: UUID,
    prefs: UserSyncPrefs,
    settings: Settings | None = None,
    limiter: GoogleApiRateLimiter | None = None,
) -> CalendarPreview:
    """Count eligible events in the first page of the window and sample titles."""
    settings = settings or get_settings()
    sample_size = settings.sync_preview_sample_size
    time_min, time_max = calendar_window(prefs, settings=settings)

    request = client.service.events().list(
        calendarId="primary",
        timeMin=_rfc3339(time_min),
        timeMax=_rfc3339(time_max),
        maxResults=settings.calendar_page_size,
        singleEvents=True,
        orderBy="startTime",
    )
    response = await (limiter or google_api_rate_limiter).with_rate_limit(
        user_id, CALENDAR, lambda: client.execute(request)
    )
    if not isinstance(response, dict):
        raise MalformedPayloadError("Calendar list response is not an object")

    eligible = [
        event
        for event in response.get("items", []) or []
        if isinstance(event, dict)
        and passes_event_filters(
            event,
            prefs.calendar_include_organizer_self,
            prefs.calendar_include_private,
        )
    ]
    return CalendarPreview(
        count=len(eligible),
        sample_titles=[e.get("summary") or "(untitled)" for e in eligible[:sample_size]],
        time_min=time_min,
        time_max=time_max,
    )
