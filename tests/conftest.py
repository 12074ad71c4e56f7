"""Pytest configuration and fixtures for test suite."""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

# Settings validation is relaxed in the test environment
os.environ.setdefault("ENVIRONMENT", "test")


class FakeClock:
    """Controllable clock returning aware UTC datetimes."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeResponse:
    """Minimal stand-in for aiohttp.ClientResponse used as an async context manager."""

    def __init__(self, status: int = 200, data: Any = None, error: Optional[Exception] = None):
        self.status = status
        self._data = data
        self.error = error

    async def json(self, content_type=None):
        if isinstance(self._data, str):
            raise ValueError("not json")
        return self._data

    async def __aenter__(self):
        if self.error is not None:
            raise self.error
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeHttpSession:
    """Records requests and replays queued responses in order."""

    def __init__(self, responses: Optional[List[FakeResponse]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def queue(self, status: int = 200, data: Any = None, error: Optional[Exception] = None) -> None:
        self.responses.append(FakeResponse(status, data, error))

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        return self.responses.pop(0)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    """Fake clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def http_session():
    """Fake aiohttp session."""
    return FakeHttpSession()


@pytest.fixture
def api_client(http_session):
    """ApiClient bound to the fake session, without backoff delays."""
    from medportal.backend.client import ApiClient
    return ApiClient(
        base_url="https://portal.test/",
        token="token-123",
        retries=3,
        backoff_base=0,
        session=http_session
    )


@pytest.fixture
def mock_entities():
    """Entity/completion backend that succeeds."""
    from unittest.mock import AsyncMock, MagicMock

    entities = MagicMock()
    entities.update_user = AsyncMock(return_value={"success": True})
    entities.create_school = AsyncMock(return_value={"id": "school-new"})
    entities.create_program = AsyncMock(return_value={"id": "program-new"})
    entities.create_clinical_site = AsyncMock(return_value={"id": "site-new"})
    entities.mark_complete = AsyncMock(return_value={"success": True})
    return entities


@pytest.fixture
def mock_analytics_backend():
    """Analytics backend that accepts every event."""
    from unittest.mock import AsyncMock, MagicMock

    backend = MagicMock()
    backend.track = AsyncMock(return_value=None)
    return backend
