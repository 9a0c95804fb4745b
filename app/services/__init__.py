"""
Application services for OmniSync.
"""

from app.services.encryption import EncryptionService, get_encryption_service
from app.services.google_auth import (
    GoogleAuthService,
    GoogleAuthError,
    GoogleAuthConfigError,
    GoogleAuthTokenError,
    get_google_auth_service,
    SERVICE_SCOPES,
)
from app.services.integration_store import (
    IntegrationStore,
    IntegrationStoreError,
    CredentialBackfillError,
)
from app.services.rate_limiter import (
    GoogleApiRateLimiter,
    RateLimitExceededError,
    google_api_rate_limiter,
)

__all__ = [
    # Encryption
    "EncryptionService",
    "get_encryption_service",
    # Google Auth
    "GoogleAuthService",
    "GoogleAuthError",
    "GoogleAuthConfigError",
    "GoogleAuthTokenError",
    "get_google_auth_service",
    "SERVICE_SCOPES",
    # Credential store
    "IntegrationStore",
    "IntegrationStoreError",
    "CredentialBackfillError",
    # Rate limiting
    "GoogleApiRateLimiter",
    "RateLimitExceededError",
    "google_api_rate_limiter",
]
