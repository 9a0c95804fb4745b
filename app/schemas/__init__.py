"""
Pydantic schemas for API request/response validation.
"""

from app.schemas.google_sync import (
    ConnectResponse,
    ConnectedResponse,
    GmailPreviewResponse,
    CalendarPreviewResponse,
    ApproveResponse,
    RateLimitStatusResponse,
)

__all__ = [
    # OAuth consent
    "ConnectResponse",
    "ConnectedResponse",
    # Preview / approve
    "GmailPreviewResponse",
    "CalendarPreviewResponse",
    "ApproveResponse",
    # Rate limiting
    "RateLimitStatusResponse",
]
