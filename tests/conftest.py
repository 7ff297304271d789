import os
import sys
from collections.abc import AsyncGenerator
from datetime import timedelta
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Load environment variables from .env file
load_dotenv()

# Settings require these; tests default to a throwaway SQLite file
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_patientflow.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from patientflow.config import settings  # noqa: E402
from patientflow.core.context import RequestContext  # noqa: E402
from patientflow.core.security import create_access_token  # noqa: E402
from patientflow.database import get_db, to_async_url  # noqa: E402
from patientflow.main import app  # noqa: E402
from patientflow.models import metadata  # noqa: E402

# Test database URL - MUST be different from production
TEST_DATABASE_URL = to_async_url(
    os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///./test_patientflow.db")
)

# Tables are dropped after every test, so never point this at a real database
if not TEST_DATABASE_URL.startswith("sqlite") and to_async_url(settings.database_url) == TEST_DATABASE_URL:
    print("\n❌ CRITICAL ERROR: Test database URL is same as production database!")
    print("Please set TEST_DATABASE_URL to a separate test database in .env")
    sys.exit(1)

# Use NullPool to avoid event loop issues between tests
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on a fresh schema."""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def structure_id() -> UUID:
    return uuid4()


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def context(user_id: UUID, structure_id: UUID) -> RequestContext:
    """Request context used by service-level tests."""
    return RequestContext(user_id=user_id, structure_id=structure_id)


def make_auth_headers(user_id: UUID, structure_id: UUID) -> dict:
    token = create_access_token(user_id, structure_id, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(user_id: UUID, structure_id: UUID) -> dict:
    """Create authentication headers for testing protected endpoints."""
    return make_auth_headers(user_id, structure_id)


@pytest.fixture
def other_structure_headers() -> dict:
    """Headers of a user working in a different structure."""
    return make_auth_headers(uuid4(), uuid4())


@pytest.fixture
def patient_id() -> UUID:
    return uuid4()
