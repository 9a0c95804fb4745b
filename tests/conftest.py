"""
Pytest configuration and fixtures for OmniSync tests.
"""

from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import get_settings
from app.models import Base
from app.services.encryption import get_encryption_service
from app.services.rate_limiter import google_api_rate_limiter


# Configure pytest-asyncio to use auto mode for async tests
pytest_plugins = ('pytest_asyncio',)

TEST_ENCRYPTION_KEY = "izZY7IUIzei-kSYNOCgiIpwOSv9_hioCMBrs2mD9drs="


@pytest.fixture(autouse=True)
def configured_settings(monkeypatch):
    """Configure encryption and Google OAuth for every test."""
    monkeypatch.setenv("ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "test-client-secret")
    get_settings.cache_clear()
    get_encryption_service.cache_clear()

    yield get_settings()

    get_settings.cache_clear()
    get_encryption_service.cache_clear()


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Start every test with an empty process-wide limiter."""
    google_api_rate_limiter.reset()
    yield
    google_api_rate_limiter.reset()


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine with the full schema.

    StaticPool keeps one connection so every session sees the same database.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine) -> Session:
    """Provide a database session for tests."""
    session_factory = sessionmaker(bind=engine, autoflush=False)
    session = session_factory()

    yield session

    session.close()


# =============================================================================
# Fake googleapiclient objects
# =============================================================================


class FakeRequest:
    """Stands in for googleapiclient.http.HttpRequest."""

    def __init__(self, response: Any = None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls = 0

    def execute(self, http=None, **kwargs):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.response


class FakeGmailResource:
    """
    Minimal users().messages() resource.

    pages: list of list-responses, keyed in order by pageToken (None first).
    messages: message id -> message dict or Exception.
    """

    def __init__(self, pages: list[dict], messages: dict[str, Any]):
        self.pages = pages
        self.message_map = messages
        self.list_calls: list[dict] = []
        self.get_calls: list[dict] = []

    def users(self):
        return self

    def messages(self):
        return self

    def list(self, **params):
        self.list_calls.append(params)
        token = params.get("pageToken")
        index = 0 if token is None else int(token.removeprefix("p")) - 1
        return FakeRequest(self.pages[index])

    def get(self, **params):
        self.get_calls.append(params)
        message = self.message_map[params["id"]]
        if isinstance(message, Exception):
            return FakeRequest(error=message)
        return FakeRequest(message)


class FakeCalendarResource:
    """Minimal events() resource with the same paging scheme as FakeGmailResource."""

    def __init__(self, pages: list[dict]):
        self.pages = pages
        self.list_calls: list[dict] = []

    def events(self):
        return self

    def list(self, **params):
        self.list_calls.append(params)
        token = params.get("pageToken")
        index = 0 if token is None else int(token.removeprefix("p")) - 1
        return FakeRequest(self.pages[index])


class FakeServiceClient:
    """Same surface as GoogleServiceClient, without credentials."""

    def __init__(self, service: Any):
        self.service = service

    async def execute(self, request, **kwargs):
        return request.execute()


@pytest.fixture
def fake_gmail():
    """Factory for a fake Gmail client: fake_gmail(pages, messages)."""

    def make(pages: list[dict], messages: dict[str, Any]) -> FakeServiceClient:
        return FakeServiceClient(FakeGmailResource(pages, messages))

    return make


@pytest.fixture
def fake_calendar():
    """Factory for a fake Calendar client: fake_calendar(pages)."""

    def make(pages: list[dict]) -> FakeServiceClient:
        return FakeServiceClient(FakeCalendarResource(pages))

    return make
