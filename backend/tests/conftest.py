"""Pytest configuration and fixtures."""

import os
import tempfile
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

TEST_JWT_SECRET = "test-supabase-jwt-secret"
_DB_PATH = os.path.join(tempfile.gettempdir(), f"vox-tests-{os.getpid()}.db")

# Settings are read once at import time, so the environment must be in place first
os.environ["SUPABASE_JWT_SECRET"] = TEST_JWT_SECRET
os.environ["DATABASE_URL_OVERRIDE"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["ENVIRONMENT"] = "development"
os.environ["GHL_CLIENT_ID"] = "test-client-id"
os.environ["GHL_CLIENT_SECRET"] = "test-client-secret"
os.environ["FASTAPI_URL"] = "http://inference.test"
os.environ["FASTAPI_API_KEY"] = "test-api-key"
os.environ["NEXTAUTH_URL"] = "http://dashboard.test"

from httpx import ASGITransport, AsyncClient  # noqa: E402
from jose import jwt  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from vox.db.base import Base  # noqa: E402
from vox.db.models import AIAgent, AgentType, ProviderData, ProviderType  # noqa: E402
from vox.db.session import AsyncSessionLocal, engine  # noqa: E402
from vox.main import app  # noqa: E402
from vox.services import conversation_search_cache  # noqa: E402


def make_token(user_id: UUID, *, audience: str = "authenticated", expires_in: int = 3600) -> str:
    """Mint a Supabase-style session JWT."""
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "aud": audience,
        "role": "authenticated",
        "email": "owner@example.com",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
    }
    return jwt.encode(claims, TEST_JWT_SECRET, algorithm="HS256")


@pytest.fixture(autouse=True)
async def setup_database() -> AsyncGenerator[None, None]:
    """Fresh schema per test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    conversation_search_cache.clear()
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    """For reading back state written by the app through an independent session."""
    return AsyncSessionLocal


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def auth_for():
    """Build auth headers for an arbitrary user."""

    def _headers(owner: UUID) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(owner)}"}

    return _headers


@pytest.fixture
def auth_headers(auth_for, user_id: UUID) -> dict[str, str]:
    return auth_for(user_id)


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def make_agent(db: AsyncSession):
    """Insert an agent for a user and return it."""

    async def _make(
        owner: UUID,
        name: str = "Agent",
        *,
        type: int = AgentType.GENERIC,
        is_active: bool = True,
        configuration: dict | None = None,
        created_at: datetime | None = None,
    ) -> AIAgent:
        agent = AIAgent(
            user_id=owner,
            name=name,
            type=type,
            is_active=is_active,
            system_prompt=f"You are {name}.",
            configuration=configuration or {},
        )
        if created_at is not None:
            agent.created_at = created_at
        db.add(agent)
        await db.commit()
        await db.refresh(agent)
        return agent

    return _make


@pytest.fixture
def connect_leadconnector(db: AsyncSession):
    """Store LeadConnector tokens (and a location) for a user."""

    async def _connect(
        owner: UUID,
        *,
        token: str = "access-1",
        refresh: str | None = "refresh-1",
        location_id: str | None = "loc-1",
    ) -> ProviderData:
        data = {"user_type": "Location"}
        if location_id:
            data["location_id"] = location_id
        row = ProviderData(
            name="leadconnector",
            type=ProviderType.GHL_LOCATION,
            auth_provider_id=owner,
            token=token,
            refresh=refresh,
            data=data,
        )
        db.add(row)
        await db.commit()
        await db.refresh(row)
        return row

    return _connect
