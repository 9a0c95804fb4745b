"""
Pydantic schemas for the Google sync endpoints.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class ConnectResponse(BaseModel):
    """Schema for an OAuth authorization URL."""
    service: str
    authorization_url: str
    state: str


class ConnectedResponse(BaseModel):
    """Schema for a completed OAuth callback."""
    service: str
    connected: bool = True
    has_refresh_token: bool


class GmailPreviewResponse(BaseModel):
    """Schema for a Gmail sync preview."""
    service: str = "gmail"
    count_estimate: int = Field(..., description="Gmail's resultSizeEstimate for the query")
    sample_subjects: list[str]
    query: str


class CalendarPreviewResponse(BaseModel):
    """Schema for a Calendar sync preview."""
    service: str = "calendar"
    count: int = Field(..., description="Eligible events in the first page of the window")
    sample_titles: list[str]
    time_min: datetime | None = None
    time_max: datetime | None = None


class ApproveResponse(BaseModel):
    """Schema for an approved (queued) sync."""
    service: str
    batch_id: UUID
    job_id: UUID
    status: str


class RateLimitStatusResponse(BaseModel):
    """Schema for the limiter snapshot of one user."""
    buckets: dict[str, dict[str, Any]]
    backoffs: dict[str, dict[str, Any]]
    circuit_breakers: dict[str, dict[str, Any]]
