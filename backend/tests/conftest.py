"""
Centralized Test Configuration.
"""

import fnmatch

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.redis_client import get_redis
from backend.app.core.reliability import cache_circuit_breaker
from backend.app.core.security import get_password_hash
from backend.app.models.user import User
import backend.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    """
    In-memory stand-in for redis.asyncio with the commands the report
    cache and party locks use. TTLs are recorded, not enforced.
    """

    RELEASE_MARKER = 'redis.call("get", KEYS[1]) == ARGV[1]'
    EXTEND_MARKER = 'redis.call("expire", KEYS[1], ARGV[2])'

    def __init__(self):
        self.store = {}
        self.sets = {}
        self.ttls = {}
        self._closed = False
        self.calls = []

    async def ping(self):
        return not self._closed

    async def get(self, key):
        self.calls.append(("get", key))
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        self.calls.append(("set", key))
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            if self.sets.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def exists(self, key):
        return 1 if key in self.store or key in self.sets else 0

    async def sadd(self, key, *members):
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def expire(self, key, seconds):
        if key in self.store or key in self.sets:
            self.ttls[key] = seconds
            return True
        return False

    async def keys(self, pattern="*"):
        return [key for key in list(self.store) + list(self.sets) if fnmatch.fnmatch(key, pattern)]

    async def eval(self, script, numkeys, *keys_and_args):
        keys = keys_and_args[:numkeys]
        args = keys_and_args[numkeys:]
        if self.EXTEND_MARKER in script:
            self.calls.append(("expire", keys[0]))
            if self.store.get(keys[0]) == args[0]:
                self.ttls[keys[0]] = int(args[1])
                return 1
            return 0
        if self.RELEASE_MARKER in script:
            if self.store.get(keys[0]) == args[0]:
                return await self.delete(keys[0])
            return 0
        raise NotImplementedError(script)

    async def flushdb(self):
        self.store = {}
        self.sets = {}
        self.ttls = {}
        self.calls = []

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()
    cache_circuit_breaker.reset_state()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
async def ledger_user(db_session):
    """A tenant created directly in the database; returns its id."""
    user = User(
        email="bookkeeper@test.com",
        username="bookkeeper",
        hashed_password=get_password_hash("password123"),
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user.id


@pytest.fixture
async def auth_headers(client):
    """Register a tenant through the API and return (headers, user_id)."""
    response = await client.post("/v1/auth/register", json={
        "email": "owner1@test.com",
        "username": "owner1",
        "password": "password123",
    })
    assert response.status_code == 201
    body = response.json()
    return {"Authorization": f"Bearer {body['access_token']}"}, body["user_id"]


@pytest.fixture
async def other_auth_headers(client):
    """Second tenant for cross-tenant isolation tests."""
    response = await client.post("/v1/auth/register", json={
        "email": "owner2@test.com",
        "username": "owner2",
        "password": "password123",
    })
    assert response.status_code == 201
    body = response.json()
    return {"Authorization": f"Bearer {body['access_token']}"}, body["user_id"]
