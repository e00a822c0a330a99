"""
Pytest configuration and fixtures for the device session auth tests.

This module provides shared fixtures for the database, the HTTP test
client, users and logged-in sessions.
"""

import os
import uuid
from datetime import timedelta
from typing import AsyncGenerator

# Settings are read at import time by device_auth.core.database, so the
# test environment must be in place before any app module is imported.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ACCESS_TOKEN_SECRET"] = "test-access-secret-for-testing-only"
os.environ["REFRESH_TOKEN_SECRET"] = "test-refresh-secret-for-testing-only"
os.environ["SESSION_SWEEP_ENABLED"] = "false"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from device_auth.core.config import Settings, get_settings
from device_auth.core.database import get_db
from device_auth.core.security import hash_password
from device_auth.core.tokens import get_token_issuer
from device_auth.main import app
from device_auth.models import Base, DeviceSession, User, UserStatus
from device_auth.models.base import utcnow
from device_auth.services import auth_service
from device_auth.services.device_service import DeviceInfo, extract_device_info

DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
PHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


# ============================================================================
# Test Configuration
# ============================================================================

@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return get_settings()


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def async_engine(test_settings: Settings):
    """
    Create async database engine for tests.

    Uses in-memory SQLite with StaticPool to ensure all connections
    share the same in-memory database.  pysqlite's own transaction
    handling is switched off so SAVEPOINTs behave.
    """
    engine = create_async_engine(
        test_settings.DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Provide database session for tests.

    Creates a new session for each test and rolls back after the test.
    """
    async_session = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide HTTP test client.

    Overrides the database dependency so every request shares the test
    session and commits / rolls back the same way ``get_db`` does.
    """
    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"User-Agent": DESKTOP_UA},
    ) as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# User Fixtures
# ============================================================================

async def _make_user(db: AsyncSession, username: str, password: str, **kwargs) -> User:
    user = User(
        username=username,
        email=f"{username}@test.com",
        full_name=username.title(),
        password_hash=hash_password(password),
        status=kwargs.pop("status", UserStatus.ACTIVE),
        **kwargs,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    # refresh() opens a transaction; end it so the shared connection is idle.
    await db.commit()
    return user


@pytest_asyncio.fixture
async def alice(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "alice", "alice-password", avatar="https://cdn.test/a.png")


@pytest_asyncio.fixture
async def bob(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "bob", "bob-password")


@pytest_asyncio.fixture
async def disabled_user(db_session: AsyncSession) -> User:
    return await _make_user(db_session, "carol", "carol-password", status=UserStatus.DISABLED)


# ============================================================================
# Device / Session Fixtures
# ============================================================================

def make_device(device_id: str, user_agent: str = DESKTOP_UA, **kwargs) -> DeviceInfo:
    return extract_device_info(
        {"User-Agent": user_agent}, "203.0.113.7", device_id=device_id, **kwargs,
    )


@pytest.fixture
def laptop() -> DeviceInfo:
    return make_device("laptop-device-0001")


@pytest.fixture
def phone() -> DeviceInfo:
    return make_device("phone-device-0001", PHONE_UA)


@pytest_asyncio.fixture
async def alice_laptop_session(db_session: AsyncSession, alice: User, laptop: DeviceInfo):
    result = await auth_service.login("alice", "alice-password", laptop, db_session)
    await db_session.commit()
    return result.session


def build_session(user: User, device_id: str, *, expires_in=timedelta(days=7), **kwargs) -> DeviceSession:
    """An unsaved active session row with freshly minted tokens."""
    session_id = uuid.uuid4()
    pair = get_token_issuer().mint(str(user.id), str(session_id), device_id)
    now = utcnow()
    return DeviceSession(
        id=session_id,
        user_id=user.id,
        device_id=device_id,
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        last_active_at=kwargs.pop("last_active_at", now),
        expires_at=now + expires_in,
        is_active=True,
        **kwargs,
    )
