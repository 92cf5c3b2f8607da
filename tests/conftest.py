"""pytest fixtures shared across all tests."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from agentage.core.config import Settings
from agentage.core.database import Database
from agentage.core.tokens import TokenPayload, TokenService
from agentage.models.user import User
from agentage.schemas.user import ProviderLink
from agentage.services.device_flow import DeviceFlowService
from agentage.services.identity_store import IdentityStore
from agentage.services.linking import AccountLinker

# Use SQLite in-memory for tests — no PostgreSQL required.
# Each test function gets its own fresh DB to avoid cross-test pollution.
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"
TEST_SECRET = "test-jwt-secret-0123456789abcdef"

_ids = itertools.count(1000)


class FakeClock:
    """Settable UTC clock handed to services as ``now``."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=TEST_DB_URL,
        app_env="test",
        jwt_secret=TEST_SECRET,
        api_fqdn="api.example.com",
        frontend_fqdn="app.example.com",
        github_client_id="gh-client",
        github_client_secret="gh-secret",
        github_callback_url="http://api.example.com/api/auth/github/callback",
        google_client_id="g-client",
        google_client_secret="g-secret",
        google_callback_url="http://api.example.com/api/auth/google/callback",
        device_poll_enforce_interval=False,
        rate_limit_enabled=False,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tokens(settings) -> TokenService:
    return TokenService.from_settings(settings)


@pytest_asyncio.fixture
async def database():
    """Fresh in-memory database with all tables created."""
    db = Database(TEST_DB_URL)
    await db.open()
    await db.create_all()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def session(database):
    async with database.session() as s:
        yield s


@pytest.fixture
def store(session, clock) -> IdentityStore:
    return IdentityStore(session, now=clock)


@pytest.fixture
def linker(store, clock) -> AccountLinker:
    return AccountLinker(store, now=clock)


@pytest.fixture
def device_flow(session, tokens, store, settings, clock) -> DeviceFlowService:
    return DeviceFlowService(session, tokens, store, settings, now=clock)


@pytest.fixture
def app(settings, database):
    from agentage.api.app import create_app

    return create_app(settings, database)


@pytest_asyncio.fixture
async def client(app):
    """HTTPX async test client wired to the FastAPI app with a test DB."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def make_user(database):
    """Create a committed user with a single provider link."""

    async def _make(
        email: str | None = None,
        *,
        role: str = "user",
        is_active: bool = True,
        provider: str = "github",
        provider_id: str | None = None,
        name: str | None = "Test User",
    ) -> User:
        n = next(_ids)
        email = email or f"user{n}@example.com"
        async with database.session() as s:
            user = await IdentityStore(s).create(
                email=email,
                name=name,
                role=role,
                is_active=is_active,
                providers={
                    provider: ProviderLink(
                        provider_id=provider_id or str(n),
                        email=email,
                        connected_at=datetime.now(timezone.utc),
                    )
                },
            )
        return user

    return _make


@pytest.fixture
def auth_header(tokens):
    """``Authorization`` header carrying a fresh token for ``user``."""

    def _header(user: User) -> dict[str, str]:
        token = tokens.issue(TokenPayload(user_id=user.id, email=user.email, role=user.role))
        return {"Authorization": f"Bearer {token}"}

    return _header
