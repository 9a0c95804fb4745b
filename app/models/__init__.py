"""
SQLAlchemy models for the Google sync service.

All models are imported here for easy access and to ensure
they are registered with the declarative base.
"""

from app.models.base import Base, JSONType, utcnow, ensure_utc
from app.models.user_integration import UserIntegration, IntegrationService, GOOGLE_PROVIDER
from app.models.raw_event import RawEvent
from app.models.job import Job, JobStatus, JobKind
from app.models.user_sync_prefs import UserSyncPrefs
from app.models.sync_audit import SyncAudit, SyncAction
