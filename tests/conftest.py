from contextlib import asynccontextmanager
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.cache import NullCache, get_cache
from libs.db.base import Base
from libs.db.session import get_async_db
from services.bestowals_service import models as _bestowal_models  # noqa: F401
from services.bestowals_service.app.main import app
from services.bestowals_service.messaging import get_messenger
from services.bestowals_service.models import PaymentMethod
from services.bestowals_service.providers import ProviderClients, get_provider_clients
from tests.fakes import FakeMessenger, FakeProviderClient


@pytest_asyncio.fixture
async def test_engine():
    """
    Fresh in-memory SQLite database per test.

    pysqlite's own transaction handling breaks SAVEPOINT, so BEGIN is
    emitted explicitly.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://", future=True, poolclass=StaticPool
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def session_scope(db_session, monkeypatch):
    """Point background tasks at the test session instead of AsyncSessionLocal."""
    from services.bestowals_service import tasks

    @asynccontextmanager
    async def _shared_session():
        yield db_session

    monkeypatch.setattr(tasks, "AsyncSessionLocal", _shared_session)
    return db_session


@pytest.fixture
def cryptomus() -> FakeProviderClient:
    return FakeProviderClient(PaymentMethod.CRYPTOMUS)


@pytest.fixture
def binance_pay() -> FakeProviderClient:
    return FakeProviderClient(PaymentMethod.BINANCE_PAY)


@pytest.fixture
def providers(cryptomus, binance_pay) -> ProviderClients:
    return ProviderClients(
        factories={
            PaymentMethod.CRYPTOMUS: lambda: cryptomus,
            PaymentMethod.BINANCE_PAY: lambda: binance_pay,
        }
    )


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def current_user() -> AuthUser:
    """Mutable: tests swap ``user_id``/``role`` to act as someone else."""
    return AuthUser(user_id="bestower-1", email="bestower@example.com")


@pytest_asyncio.fixture
async def client(
    db_session, providers, messenger, current_user
) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient against the bestowals app with the DB, auth,
    provider clients, messenger and cache replaced.
    """
    app.dependency_overrides[get_async_db] = lambda: db_session
    app.dependency_overrides[get_current_user] = lambda: current_user
    app.dependency_overrides[get_provider_clients] = lambda: providers
    app.dependency_overrides[get_messenger] = lambda: messenger
    app.dependency_overrides[get_cache] = lambda: NullCache()

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def anonymous_client(db_session, providers, messenger):
    """Client without an auth override, for webhook and 401 tests."""
    app.dependency_overrides[get_async_db] = lambda: db_session
    app.dependency_overrides[get_provider_clients] = lambda: providers
    app.dependency_overrides[get_messenger] = lambda: messenger

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
