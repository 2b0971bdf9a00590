"""
Sarana Care - Test Configuration and Fixtures
"""

import os
from collections.abc import AsyncGenerator
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set testing environment before the app reads its settings
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"

from sarana_care.core.config import Settings, get_settings
from sarana_care.core.database import get_session
from sarana_care.core.security import create_access_token
from sarana_care.main import app
from sarana_care.models import Base, Category, User, UserRole

# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session
        await session.rollback()

@pytest.fixture
def settings() -> Settings:
    return get_settings().model_copy(
        update={
            "notification_window": 5,
            "notification_time_source": "transition",
            "display_timezone": "Asia/Jakarta",
        }
    )

# =============================================================================
# USERS & REFERENCE DATA
# =============================================================================

async def _create_user(session: AsyncSession, name: str, role: UserRole) -> User:
    suffix = uuid4().hex[:8]
    user = User(
        auth_user_id=f"auth-{name.lower()}-{suffix}",
        email=f"{name.lower()}-{suffix}@sarana.test",
        name=name,
        role=role,
    )
    session.add(user)
    await session.flush()
    return user

@pytest.fixture
async def admin_user(session: AsyncSession) -> User:
    return await _create_user(session, "Budi", UserRole.ADMIN)

@pytest.fixture
async def student_user(session: AsyncSession) -> User:
    return await _create_user(session, "Sari", UserRole.STUDENT)

@pytest.fixture
async def other_student(session: AsyncSession) -> User:
    return await _create_user(session, "Dimas", UserRole.STUDENT)

@pytest.fixture
async def category(session: AsyncSession) -> Category:
    category = Category(name="Electrical")
    session.add(category)
    await session.flush()
    return category

# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture
async def client(session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Test client sharing the test session."""
    async def override_get_session():
        yield session

    app.dependency_overrides[get_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

def auth_headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.auth_user_id)}"}

@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return auth_headers_for(admin_user)

@pytest.fixture
def student_headers(student_user: User) -> dict:
    return auth_headers_for(student_user)

