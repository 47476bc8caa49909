"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- File-backed SQLite engines for tests that need separate connections
- A fake email API
- Test data factories
"""
# JWT_SECRET_KEY must be set before importing mailroom - the validator requires it when DEBUG=False
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")

import json
from typing import AsyncGenerator
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from mailroom.core.auth import create_access_token
from mailroom.core.config import settings
from mailroom.db.database import Base, get_db
from mailroom.db.models.subscription import Subscription, SubscriptionStatus
from mailroom.db.models.user import User
from mailroom.domain.services.email_client import EmailClient
from mailroom.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

_TEST_JWT_SECRET = "test-jwt-secret-key-for-testing-only-do-not-use-in-production"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory over the in-memory engine (one shared connection)"""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
def file_db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'mailroom-test.db'}"


@pytest.fixture(scope="function")
async def file_engine(file_db_url):
    """
    File-backed SQLite engine - every session gets its own connection, so
    concurrent sessions really contend for locks.

    The short busy timeout turns a blocked writer into "database is locked"
    quickly instead of after sqlite's 5 second default.
    """
    engine = create_async_engine(
        file_db_url,
        connect_args={"timeout": 0.5},
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def file_session_factory(file_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def set_jwt_secret():
    """Pin JWT settings for tests"""
    with patch.object(settings, "JWT_SECRET_KEY", _TEST_JWT_SECRET), \
         patch.object(settings, "JWT_ALGORITHM", "HS256"), \
         patch.object(settings, "JWT_ACCESS_TOKEN_EXPIRE_MINUTES", 60):
        yield


# ============================================================================
# Fake email API
# ============================================================================

class FakeEmailApi:
    """
    Stand-in for the email HTTP API, plugged into EmailClient through
    httpx.MockTransport.

    `fail_for` makes sends to those recipients return 500.
    """

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.fail_for = fail_for or set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        payload = json.loads(request.content)
        if payload["To"] in self.fail_for:
            return httpx.Response(500, text="upstream exploded")
        return httpx.Response(200, json={"ErrorCode": 0, "Message": "OK"})

    @property
    def recipients(self) -> list[str]:
        return [json.loads(r.content)["To"] for r in self.requests]

    def client(self) -> EmailClient:
        return EmailClient(
            base_url="http://email.test",
            sender="newsletter@example.com",
            authorization_token="test-token",
            timeout=2.0,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def fake_email_api() -> FakeEmailApi:
    return FakeEmailApi()


@pytest.fixture
async def email_client(fake_email_api: FakeEmailApi) -> AsyncGenerator[EmailClient, None]:
    async with fake_email_api.client() as client:
        yield client


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    async def _create_user(
        username: str = "publisher",
        is_active: bool = True,
    ) -> User:
        user = User(username=username, is_active=is_active)
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def subscription_factory(db_session: AsyncSession):
    """Factory for creating test subscriptions"""
    async def _create_subscription(
        email: str,
        name: str = "Test Subscriber",
        status: SubscriptionStatus = SubscriptionStatus.CONFIRMED,
    ) -> Subscription:
        subscription = Subscription(email=email, name=name, status=status)
        db_session.add(subscription)
        await db_session.commit()
        await db_session.refresh(subscription)
        return subscription

    return _create_subscription


@pytest.fixture
async def sample_user(user_factory) -> User:
    return await user_factory()


@pytest.fixture
def auth_headers(sample_user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(sample_user.id)}"}

