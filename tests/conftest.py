"""Root conftest — test infrastructure for all backend tests.

Provides:
- Per-test in-memory SQLite database (aiosqlite) with the full schema
- db_session / session_maker fixtures
- Demo referrer fixture (code XY7G4D)
- API clients with dependency overrides (authenticated and anonymous)
- Rate limiter reset between tests
"""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from app.api.deps.auth import Principal

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

REFERRER_ID = "usr_referrer_001"
REFERRER_CODE = "XY7G4D"


# ─────────────────────────────────────────────────────────────────────────────
# Database Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
async def test_engine():
    """Fresh in-memory database per test.

    StaticPool keeps the single in-memory connection alive across sessions,
    so every session of the test sees the same database.
    """
    import app.models  # noqa: F401

    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return sessionmaker(  # type: ignore[call-overload]
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_maker):
    """Database session for one test. Application code commits freely."""
    async with session_maker() as session:
        yield session


@pytest.fixture
async def demo_referrer(db_session: AsyncSession):
    """The seeded demo referrer: code XY7G4D, two complete and one invited record."""
    from app.core.seed import seed_demo_data
    from app.domain.referral_code_operations import referral_code_ops

    await seed_demo_data(db_session)
    return await referral_code_ops.get_by_code(db_session, REFERRER_CODE)


@pytest.fixture
async def referral_code(db_session: AsyncSession):
    """A fresh code with no referral records."""
    from app.domain.referral_code_operations import referral_code_ops

    code = await referral_code_ops.ensure_code(db_session, "usr_owner_042")
    await db_session.commit()
    return code


# ─────────────────────────────────────────────────────────────────────────────
# API Clients
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def principal() -> Principal:
    return Principal(user_id=REFERRER_ID)


@pytest.fixture
async def api_client(db_session: AsyncSession, principal: Principal):
    """HTTP client that bypasses JWT auth and uses the test database session.

    Overrides: get_current_principal, get_db
    """
    from app.api.deps.auth import get_current_principal
    from app.core.database import get_db
    from app.main import app

    app.dependency_overrides[get_current_principal] = lambda: principal

    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def unauth_client(db_session: AsyncSession):
    """HTTP client with real auth (no bearer token) on the test database."""
    from app.core.database import get_db
    from app.main import app

    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Rate limit windows never leak between tests."""
    from app.core.rate_limit import rate_limiter

    rate_limiter.reset()
    yield
    rate_limiter.reset()
