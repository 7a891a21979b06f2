"""
Pytest configuration and fixtures for CrowdSubmit tests.
"""

import os
from typing import AsyncGenerator, Callable, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["CROWDSUBMIT_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from core.config import (
    Config,
    DatabaseConfig,
    DeviceConfig,
    LoggingConfig,
    SchedulerConfig,
    SubmitConfig,
)
from core.database import Base, DatabaseManager
from submission.identity import IdentityProvider
from submission.models import ConnectionDecision, Rule

RAW_INSTALLATION_ID = "9774d56d682e549c"


class FakeResponse:
    """Stand-in for an HTTP response that tracks how often it is closed."""

    def __init__(
        self,
        status: int = 200,
        body: bytes = b'{"ok": true}',
        read_error: Optional[BaseException] = None,
    ):
        self.status = status
        self._body = body
        self._read_error = read_error
        self.close_count = 0
        self.read_count = 0

    def read(self) -> bytes:
        self.read_count += 1
        if self._read_error is not None:
            raise self._read_error
        return self._body

    def close(self) -> None:
        self.close_count += 1


class FakeStream:
    """File-like body attached to an ``HTTPError``."""

    def __init__(self):
        self.close_count = 0

    def read(self, *args) -> bytes:
        return b""

    def close(self) -> None:
        self.close_count += 1


class FakeOpener:
    """Replaces ``urlopen``; returns a response or raises a prepared error."""

    def __init__(
        self,
        response: Optional[FakeResponse] = None,
        error: Optional[BaseException] = None,
    ):
        self.response = response
        self.error = error
        self.requests = []
        self.timeouts = []
        self.opened = []

    def __call__(self, request, timeout):
        self.requests.append(request)
        self.timeouts.append(timeout)
        if self.error is not None:
            raise self.error
        self.opened.append(self.response)
        return self.response


@pytest.fixture
def test_config() -> Config:
    """Create a test configuration."""
    return Config(
        submit=SubmitConfig(),
        device=DeviceConfig(sdk_level=23, version_code=2024),
        scheduler=SchedulerConfig(
            debug_build=False,
            poll_interval_seconds=0.01,
            initial_backoff_seconds=30.0,
        ),
        database=DatabaseConfig(),
        logging=LoggingConfig(file=None),
    )


@pytest.fixture
def identity() -> IdentityProvider:
    """Identity provider backed by a fixed installation id."""
    return IdentityProvider(
        installation_id=lambda: RAW_INSTALLATION_ID,
        sdk_level=23,
        version_code=2024,
    )


@pytest.fixture
def make_opener() -> Callable[..., FakeOpener]:
    return FakeOpener


@pytest_asyncio.fixture
async def db_engine():
    """Create a test database engine with SQLite in-memory."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def db_manager(db_engine) -> AsyncGenerator[DatabaseManager, None]:
    """Create a test database manager."""
    manager = DatabaseManager.__new__(DatabaseManager)
    manager._database_url = "sqlite+aiosqlite:///:memory:"
    manager._echo = False
    manager._engine = db_engine
    manager._session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    yield manager


@pytest.fixture
def sample_rule() -> Rule:
    """Rule with every policy flag off except apply and notify."""
    return Rule(package="com.example.app", label="Example", apply=True, notify=True)


@pytest.fixture
def sample_decision() -> ConnectionDecision:
    """An allowed HTTPS connection over IPv4/TCP."""
    return ConnectionDecision(version=4, protocol=6, daddr="1.2.3.4", dport=443, access=1)
