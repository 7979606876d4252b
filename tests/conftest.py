"""Test configuration and fixtures."""

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set up test environment variables BEFORE importing app modules
os.environ.setdefault("DEV_MODE", "true")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("GITHUB_CLIENT_ID", "test-client-id")
os.environ.setdefault("GITHUB_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("BACKEND_URL", "https://sync.example.com")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from kindlesync.auth.github import GitHubClient
from kindlesync.config import get_settings
from kindlesync.core.auth_flow import AuthOrchestrator
from kindlesync.database import Base
from kindlesync.models import User


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeGitHub:
    """In-memory stand-in for GitHub's token and user endpoints.

    ``profiles`` maps an authorization code to the profile returned for it.
    Codes are single-use, like the real thing.
    """

    def __init__(self):
        self.profiles: dict[str, dict] = {
            "abc": {"id": 1001, "login": "alice", "avatar_url": "https://avatars.example.com/alice"},
            "def": {"id": 2002, "login": "bob", "avatar_url": None},
        }
        self.used_codes: set[str] = set()
        self.calls: list[str] = []
        self.token_status = 200
        self.user_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request.url.path)

        if request.url.path == "/login/oauth/access_token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"message": "boom"})
            form = dict(httpx.QueryParams(request.content.decode()))
            code = form.get("code", "")
            if code not in self.profiles or code in self.used_codes:
                return httpx.Response(200, json={"error": "bad_verification_code"})
            self.used_codes.add(code)
            return httpx.Response(200, json={"access_token": f"gho_{code}", "token_type": "bearer"})

        if request.url.path == "/user":
            if self.user_status != 200:
                return httpx.Response(self.user_status, json={"message": "Bad credentials"})
            token = request.headers.get("Authorization", "").removeprefix("Bearer gho_")
            return httpx.Response(200, json=self.profiles[token])

        return httpx.Response(404)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def github_client(settings, fake_github) -> GitHubClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_github.handler))
    return GitHubClient(settings, http_client=http_client)


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session_maker() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def orchestrator(db_session, settings, github_client, clock) -> AuthOrchestrator:
    return AuthOrchestrator(db_session, settings=settings, provider=github_client, clock=clock)


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user."""
    user = User(
        github_uid="12345",
        username="testuser",
        avatar_url="https://avatars.example.com/testuser",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user
