"""
Pytest configuration and shared fixtures.

Database tests run against in-memory SQLite (aiosqlite + StaticPool, one
shared connection). API tests drive the FastAPI app through httpx's
ASGITransport with the session, platform and settings dependencies overridden.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import callconsole.calls.models  # noqa: F401  (registers tables)
from callconsole.auth.jwt import JWTHandler
from callconsole.auth.models import User
from callconsole.calls.cache import RefreshingCache
from callconsole.calls.models import CallRecord
from callconsole.calls.repository import CallRecordRepository
from callconsole.calls.status import CallStatus
from callconsole.config import Settings, get_settings
from callconsole.main import create_app
from callconsole.shared.database import Base, get_db_session
from callconsole.telephony.config import PlatformConfig, get_platform_config
from callconsole.telephony.factory import get_calling_platform
from callconsole.telephony.mock_adapter import MockCallingPlatform

T0 = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeMonotonic:
    """Monotonic clock for cache expiry tests."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        app_env="dev",
        debug=False,
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret_key="test-secret-key-for-testing-only",
        public_base_url="https://console.example.com/",
        cors_origins="http://localhost:3000",
    )


@pytest.fixture
def platform_config() -> PlatformConfig:
    return PlatformConfig(
        endpoint="https://hooks.example.com/workflows/start",
        api_key="hr_test_key",
        polling_secret="poll-secret",
        org_id="org_123",
        reconcile_token="reconcile-token",
        use_case_id="uc_42",
        callback_secret="",
    )


@pytest.fixture
def platform() -> MockCallingPlatform:
    return MockCallingPlatform()


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
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
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def repository(db_session: AsyncSession, clock: FrozenClock) -> CallRecordRepository:
    return CallRecordRepository(db_session, clock=clock)


@pytest.fixture
def make_call(
    repository: CallRecordRepository,
    clock: FrozenClock,
) -> Callable[..., Awaitable[CallRecord]]:
    """Insert a call record; RUNNING with a run id unless told otherwise."""

    async def _make(
        *,
        status: CallStatus = CallStatus.RUNNING,
        run_id: str | None = "run_abc",
        phone_number: str = "+34600000000",
        subject_name: str = "Jane Doe",
        age_seconds: float = 0,
        metadata: dict[str, Any] | None = None,
        user_id: UUID | None = None,
    ) -> CallRecord:
        return await repository.create(
            subject_name=subject_name,
            phone_number=phone_number,
            status=status,
            run_id=run_id,
            call_metadata=metadata or {},
            user_id=user_id,
            created_at=clock() - timedelta(seconds=age_seconds),
        )

    return _make


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    user = User(id=uuid4(), email="agent@example.com", name="Sales Agent", role="user")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
def auth_headers(test_settings: Settings, user: User) -> dict[str, str]:
    token = JWTHandler(test_settings).create_access_token(
        user_id=user.id,
        email=user.email,
        name=user.name,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app(
    session_factory: async_sessionmaker[AsyncSession],
    platform: MockCallingPlatform,
    test_settings: Settings,
    platform_config: PlatformConfig,
) -> Generator[FastAPI, None, None]:
    app = create_app()
    app.state.failed_runs_cache = RefreshingCache(ttl_seconds=10)

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_calling_platform] = lambda: platform
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_platform_config] = lambda: platform_config

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def api_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
