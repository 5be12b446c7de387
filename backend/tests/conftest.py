"""Pytest fixtures for backend tests."""

import os
import re
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

# Settings are read at import time; configure them before importing app modules
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("HABIT_ENCRYPTION_KEY", "test-master-key-for-habitdot-0123456789abcdef")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("EMAIL_ENABLED", "false")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_email_sender, get_store
from app.core.security import get_password_hash
from app.main import app
from app.services.email import EmailResult, EmailSender
from app.storage.memory import MemoryStore
from app.utils import clock

TEST_PASSWORD = "correct-horse-battery"


class FakeClock:
    """Stands in for clock.utcnow; tests move time with advance()."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeEmailSender(EmailSender):
    """Records outgoing mail instead of calling Brevo."""

    def __init__(self, fail_with: str | None = None):
        self.sent: list[dict[str, str]] = []
        self.fail_with = fail_with

    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> EmailResult:
        self.sent.append({"to": to, "subject": subject, "html": html_body, "text": text_body})
        if self.fail_with:
            return EmailResult(success=False, error=self.fail_with)
        return EmailResult(success=True)

    def last_code(self, to: str) -> str:
        for message in reversed(self.sent):
            if message["to"] == to:
                return re.search(r"\b(\d{6})\b", message["text"]).group(1)
        raise AssertionError(f"No email sent to {to}")


@pytest.fixture
def fake_clock():
    """Freeze time at a fixed instant for every module that reads clock.utcnow."""
    fake = FakeClock(datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc))
    with patch.object(clock, "utcnow", new=fake):
        yield fake


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def test_password() -> str:
    return TEST_PASSWORD


@pytest_asyncio.fixture
async def test_user(store: MemoryStore):
    """A verified account with TEST_PASSWORD."""
    return await store.create_user("test@example.com", get_password_hash(TEST_PASSWORD))


@pytest_asyncio.fixture
async def client(store, email_sender, fake_clock) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated test client on an in-memory store."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_email_sender] = lambda: email_sender

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


async def _fetch_csrf_token(client: AsyncClient) -> str:
    response = await client.get("/api/auth/csrf")
    assert response.status_code == 200
    return response.json()["csrf_token"]


@pytest_asyncio.fixture
async def csrf_token(client: AsyncClient) -> str:
    """CSRF token of a fresh anonymous session on ``client``."""
    return await _fetch_csrf_token(client)


@pytest.fixture
def login_as(client: AsyncClient):
    """Log ``client`` in; returns the session's CSRF token."""

    async def _login(email: str, password: str) -> str:
        token = await _fetch_csrf_token(client)
        response = await client.post(
            "/api/auth/login",
            json={"email": email, "password": password},
            headers={"X-CSRF-Token": token},
        )
        assert response.status_code == 200, response.text
        return response.json()["csrf_token"]

    return _login


@pytest_asyncio.fixture
async def authenticated_client(client: AsyncClient, test_user, login_as) -> AsyncClient:
    """Client logged in as test_user; the CSRF token is preset as a default header."""
    client.headers["X-CSRF-Token"] = await login_as(test_user.email, TEST_PASSWORD)
    return client
