"""
Pytest configuration and fixtures
"""

from typing import AsyncGenerator, Any, Callable, Dict, List

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from connectors.registry import get_connector
from core.config import Settings
from core.security import CredentialVault
from lifecycle.manager import DataSourceManager
from models import Base
from models.base import DataSourceType
from schemas.data_source import DataSourceCreate
from tests.fakes import FakeConnector


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Small batches and short timeouts"""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        CONNECTION_TEST_TIMEOUT=2.0,
        SYNC_BATCH_SIZE=100,
        SYNC_BATCH_TIMEOUT=5.0,
        SYNC_MAX_BATCH_ATTEMPTS=3,
        SYNC_MAX_CONSECUTIVE_FAILURES=3,
        SCHEMA_MAX_TABLES=100,
        SCHEMA_MAX_COLUMNS=200,
        SCHEMA_TIMEOUT=2.0,
        MAX_CONCURRENT_JOBS=4,
        SHUTDOWN_GRACE_SECONDS=1.0,
        UPLOAD_DIR=str(tmp_path / "uploads"),
        SCHEDULER_ENABLED=False,
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine(test_settings):
    """Create test database engine (SQLite file per test)"""
    engine = create_async_engine(
        test_settings.DATABASE_URL,
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(CredentialVault.generate_key())


@pytest.fixture
def make_rows() -> Callable[[int], List[Dict[str, Any]]]:
    def _make(count: int) -> List[Dict[str, Any]]:
        return [{"id": i, "name": f"customer-{i}", "amount": i * 1.5} for i in range(1, count + 1)]
    return _make


@pytest.fixture
def fake_connector(make_rows) -> FakeConnector:
    return FakeConnector(rows=make_rows(250))


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest_asyncio.fixture
async def manager(session_factory, vault, fake_connector, test_settings, sleeps):
    """Manager wired to SQLite, the fake PostgreSQL connector and a recording sleep"""

    def resolver(source_type):
        if DataSourceType(source_type) == DataSourceType.POSTGRESQL:
            return fake_connector
        return get_connector(source_type)

    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    manager = DataSourceManager(
        session_factory,
        vault,
        resolver=resolver,
        settings=test_settings,
        sleep=record_sleep,
    )
    yield manager
    await manager.shutdown()


@pytest.fixture
def postgres_payload() -> DataSourceCreate:
    return DataSourceCreate(
        name="Orders DB",
        type=DataSourceType.POSTGRESQL,
        host="db.internal",
        port=5432,
        database="orders",
        username="reader",
        password="s3cret",
    )


@pytest_asyncio.fixture
async def connected_source(manager, postgres_payload):
    """A PostgreSQL source that passed its connection test"""
    source = await manager.create(postgres_payload)
    result = await manager.test(source.id)
    assert result.success
    return await manager.get(source.id)
