"""
Centralized Test Configuration.
"""

import os
import uuid

# Cheap hashes for tests; must be set before settings are loaded
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ["DEBUG"] = "false"

import pytest
from datetime import datetime
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from fintrack.app.main import app
from fintrack.app.db.session import get_db, get_session_factory, Base
from fintrack.app.core.config import get_security_policy
from fintrack.app.core.idempotency import FailureDeduplicator
from fintrack.app.core.redis_client import get_redis
from fintrack.app.core.security import get_password_hash
from fintrack.app.models.enums import UserRole
from fintrack.app.models.user import User
from fintrack.app.models.activity_log import UserActivityLog
from fintrack.app.schemas.client_context import ClientContext
from fintrack.app.services.account_security import AccountSecurityService
from fintrack.app.services.activity_log import ActivityLog
from fintrack.app.services.authentication import AuthenticationCoordinator
from fintrack.tests.helpers import DEFAULT_PASSWORD, CHROME_WINDOWS_UA
import fintrack.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Hash once, bcrypt is slow even with few rounds
DEFAULT_PASSWORD_HASH = get_password_hash(DEFAULT_PASSWORD)


def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class FixedClock:
    """Controllable clock for the security services."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(test_engine.sync_engine, "connect", set_sqlite_pragma)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def redis():
    return MockRedis()


@pytest.fixture(autouse=True)
def apply_overrides(session_factory, redis):
    """Point the app at the test database and the mock Redis."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_redis():
        return redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_redis] = override_get_redis
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def policy():
    return get_security_policy()


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 10, 14, 0, 0))


@pytest.fixture
def activity_log(session_factory):
    return ActivityLog(session_factory)


@pytest.fixture
def security_service(policy, activity_log, redis, clock):
    return AccountSecurityService(
        policy=policy,
        activity_log=activity_log,
        deduplicator=FailureDeduplicator(redis, ttl_seconds=policy.failure_dedup_seconds),
        clock=clock,
    )


@pytest.fixture
def coordinator(security_service, activity_log, clock):
    return AuthenticationCoordinator(security_service, activity_log, clock=clock)


@pytest.fixture
def make_context():
    """Build a ClientContext; every call gets a fresh request id unless given."""
    def _make(
        user_agent: str = CHROME_WINDOWS_UA,
        ip_public: str = "203.0.113.10",
        browser: str = "Chrome",
        platform: str = "Windows",
        request_id: str = None,
    ) -> ClientContext:
        return ClientContext(
            ip_private="10.0.0.5",
            ip_public=ip_public,
            browser=browser,
            browser_version="120.0.0",
            platform=platform,
            user_agent=user_agent,
            request_id=request_id or uuid.uuid4().hex,
        )
    return _make


@pytest.fixture
def make_account(db_session):
    """Insert an account; keyword arguments override column values."""
    counter = {"n": 0}

    async def _make(**overrides) -> User:
        counter["n"] += 1
        n = counter["n"]
        values = dict(
            username=f"user{n}",
            email=f"user{n}@example.com",
            full_name=f"User {n}",
            hashed_password=DEFAULT_PASSWORD_HASH,
            role=UserRole.USER,
        )
        values.update(overrides)
        account = User(**values)
        db_session.add(account)
        await db_session.commit()
        await db_session.refresh(account)
        return account

    return _make


@pytest.fixture
async def admin_account(make_account):
    return await make_account(
        username="admin",
        email="admin@example.com",
        full_name="Grace Admin",
        position="Security Officer",
        role=UserRole.ADMIN,
    )


@pytest.fixture
def activity_entries(session_factory):
    """Fetch activity log entries, optionally filtered by type."""

    async def _fetch(activity_type: str = None, user_id: int = None):
        async with session_factory() as session:
            query = select(UserActivityLog).order_by(UserActivityLog.id)
            if activity_type:
                query = query.where(UserActivityLog.activity_type == activity_type)
            if user_id is not None:
                query = query.where(UserActivityLog.user_id == user_id)
            result = await session.execute(query)
            return result.scalars().all()

    return _fetch
