"""
Gmail fetching: query building, paginated listing, message detail and preview.

All calls go through the rate limiter and the client's retrying execute().
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any
from uuid import UUID

from app.config import Settings, get_settings
from app.models import UserSyncPrefs
from app.services.google_clients import GoogleServiceClient
from app.services.rate_limiter import (
    GMAIL_METADATA,
    GMAIL_READ,
    GoogleApiRateLimiter,
    google_api_rate_limiter,
)

logger = logging.getLogger(__name__)

# Gmail inbox tabs and the system label ids messages carry for them
LABEL_CATEGORY_MAP = {
    "Primary": "CATEGORY_PERSONAL",
    "Promotions": "CATEGORY_PROMOTIONS",
    "Social": "CATEGORY_SOCIAL",
    "Updates": "CATEGORY_UPDATES",
    "Forums": "CATEGORY_FORUMS",
}

# System labels whose id is the label name itself
SYSTEM_LABEL_IDS = frozenset(
    {"INBOX", "SENT", "DRAFT", "SPAM", "TRASH", "UNREAD", "STARRED", "IMPORTANT", "CHAT"}
)

NEWER_THAN_RE =re.compile(r"\bnewer_than:(\d+)([dmy])\b", re.IGNORECASE)
DAYS_PER_UNIT = {"d": 1, "m": 30, "y": 365}


class MalformedPayloadError(ValueError):
    """Raised when the API returns an unexpected shape."""

    pass


@dataclass
class GmailPreview:
    count_estimate: int
    sample_subjects: list[str] = field(default_factory=list)
    query: str = ""


def map_label(name: str) -> str:
    """Map a tab name to its label id; unmapped names pass through."""
    return LABEL_CATEGORY_MAP.get(name, name)


def _system_label_id(name: str) -> str | None:
    label_id = map_label(name)
    if label_id in LABEL_CATEGORY_MAP.values() or label_id in SYSTEM_LABEL_IDS:
        return label_id
    return None


def _query_term(name: str) -> str:
    if name in LABEL_CATEGORY_MAP:
        return f"category:{name.lower()}"
    if " " in name:
        return f'label:"{name}"'
    return f"label:{name}"


def build_gmail_query(
    base: str | None,
    includes: list[str] | None = None,
    excludes: list[str] | None = None,
) -> str:
    """
    Combine the user's base query with include/exclude label terms.

    Example:
        build_gmail_query("newer_than:30d", ["Primary"], ["Promotions"])
        -> 'newer_than:30d category:primary -category:promotions'
    """
    parts = [base.strip()] if base and base.strip() else []

    include_terms = [_query_term(name) for name in includes or []]
    if len(include_terms) == 1:
        parts.append(include_terms[0])
    elif include_terms:
        parts.append("{" + " ".join(include_terms) + "}")

    parts.extend(f"-{_query_term(name)}" for name in excludes or [])
    return " ".join(parts)


def query_window_days(query: str | None) -> int | None:
    """Days covered by a `newer_than:` term in the query, if any."""
    if not query:
        return None
    match = NEWER_THAN_RE.search(query)
    if not match:
        return None
    return int(match.group(1)) * DAYS_PER_UNIT[match.group(2).lower()]


def passes_label_filters(
    label_ids: list[str] | None,
    includes: list[str] | None,
    excludes: list[str] | None,
) -> bool:
    """
    Client-side label filter.

    A message passes when it carries at least one included label (or no
    includes are configured) and none of the excluded ones.

    Only inbox tabs and system labels are checked here. Messages carry
    user labels as opaque ids (Label_42), so those are left to the query.
    If any include is a user label the include check is skipped entirely,
    since the query ORs the includes together.
    """
    labels = set(label_ids or [])
    wanted = {_system_label_id(name) for name in includes or []}
    blocked = {_system_label_id(name) for name in excludes or []} - {None}

    if wanted and None not in wanted and not labels & wanted:
        return False
    return not labels & blocked


def _header(message: dict[str, Any], name: str) -> str | None:
    for header in message.get("payload", {}).get("headers", []) or []:
        if header.get("name", "").lower() == name.lower():
            return header.get("value")
    return None


def message_occurred_at(message: dict[str, Any], now: datetime | None = None) -> datetime:
    """
    When a message happened: internalDate (ms) first, then the Date header,
    then now.
    """
    internal = message.get("internalDate")
    if internal not in (None, ""):
        try:
            ms = int(internal)
            if ms > 0:
                return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            pass

    date_header = _header(message, "Date")
    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        except (TypeError, ValueError):
            pass

    return now or datetime.now(timezone.utc)


async def list_gmail_message_ids(
    client: GoogleServiceClient,
    query: str,
    user_id: UUID,
    page_size: int | None = None,
    limit: int | None = None,
    limiter: GoogleApiRateLimiter | None = None,
) -> tuple[list[str], int]:
    """
    List message ids matching the query, following every nextPageToken.

    Args:
        client: Gmail client
        query: Gmail search query
        user_id: Owner, for rate limiting
        page_size: maxResults per page (Gmail caps it at 500)
        limit: Stop paging once this many ids are collected

    Returns:
        Tuple of (message ids, pages fetched)
    """
    limiter = limiter or google_api_rate_limiter
    page_size = page_size or get_settings().gmail_page_size

    ids: list[str] = []
    pages = 0
    page_token = None

    while True:
        params = {"userId": "me", "q": query, "maxResults": page_size}
        if page_token:
            params["pageToken"] = page_token
        request = client.service.users().messages().list(**params)

        response = await limiter.with_rate_limit(
            user_id, GMAIL_READ, lambda: client.execute(request)
        )
        pages += 1
        if not isinstance(response, dict):
            raise MalformedPayloadError("Gmail list response is not an object")

        for ref in response.get("messages", []) or []:
            if isinstance(ref, dict) and ref.get("id"):
                ids.append(ref["id"])

        page_token = response.get("nextPageToken")
        if not page_token or (limit is not None and len(ids) >= limit):
            break

    if limit is not None:
        ids = ids[:limit]
    return ids, pages


async def fetch_gmail_message(
    client: GoogleServiceClient,
    message_id: str,
    user_id: UUID,
    fmt: str = "full",
    metadata_headers: list[str] | None = None,
    limiter: GoogleApiRateLimiter | None = None,
) -> dict[str, Any]:
    """
    Fetch one message.

    Raises:
        MalformedPayloadError: If the response has no message id
    """
    limiter = limiter or google_api_rate_limiter
    params: dict[str, Any] = {"userId": "me", "id": message_id, "format": fmt}
    if metadata_headers:
        params["metadataHeaders"] = metadata_headers
    request = client.service.users().messages().get(**params)

    quota = GMAIL_READ if fmt == "full" else GMAIL_METADATA
    message = await limiter.with_rate_limit(user_id, quota, lambda: client.execute(request))
    if not isinstance(message, dict) or not message.get("id"):
        raise MalformedPayloadError(f"Gmail message {message_id} has no id")
    return message


async def preview_gmail(
    client: GoogleServiceClient,
    user_id: UUID,
    prefs: UserSyncPrefs,
    settings: Settings | None = None,
    limiter: GoogleApiRateLimiter | None = None,
) -> GmailPreview:
    """
    Estimate what a sync would ingest, sampling a few subjects.

    Only the first page is listed; nothing is persisted.
    """
    settings = settings or get_settings()
    limiter = limiter or google_api_rate_limiter
    sample_size = settings.sync_preview_sample_size

    query = build_gmail_query(
        prefs.gmail_query,
        prefs.gmail_label_includes,
        prefs.gmail_label_excludes,
    )
    request = client.service.users().messages().list(
        userId="me", q=query, maxResults=sample_size
    )
    response = await limiter.with_rate_limit(
        user_id, GMAIL_READ, lambda: client.execute(request)
    )
    if not isinstance(response, dict):
        raise MalformedPayloadError("Gmail list response is not an object")

    refs = [r for r in response.get("messages", []) or [] if isinstance(r, dict) and r.get("id")]
    estimate = int(response.get("resultSizeEstimate") or len(refs))

    subjects: list[str] = []
    for ref in refs[:sample_size]:
        try:
            message = await fetch_gmail_message(
                client,
                ref["id"],
                user_id,
                fmt="metadata",
                metadata_headers=["Subject"],
                limiter=limiter,
            )
        except MalformedPayloadError as e:
            logger.warning("Skipping preview message %s: %s", ref["id"], e)
            continue
        subjects.append(_header(message, "Subject") or "(no subject)")

    return GmailPreview(count_estimate=estimate, sample_subjects=subjects, query=query)
