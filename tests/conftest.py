# tests/conftest.py
import os

# Must be set before app.database is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timezone

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base
from app import models  # noqa: F401
from app.core.config import Settings
from app.core.enums import MarketplaceId
from app.integrations.registry import MarketplaceRegistry
from app.models.connection import MarketplaceConnection
from app.services.buybox_service import BuyBoxService
from app.services.connection_service import ConnectionService
from app.services.repricing_scheduler import RepricingScheduler
from app.services.repricing_service import RepricingService
from app.services.sync_orchestrator import SyncOrchestrator

from tests.mocks.mock_marketplace import (
    FakeDriver,
    FrozenClock,
    MockBuyBoxMonitor,
    MockCredentialProvider,
    MockMarketplaceAdapter,
    RecordingIngestion,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        ENVIRONMENT="testing",
        SCHEDULER_SECRET="test-scheduler-secret",
        BASIC_AUTH_PASSWORD="test-password",
        SYNC_CALL_TIMEOUT_SECONDS=5,
        SYNC_PAGE_SIZE=100,
        SYNC_MAX_CONCURRENT=1,
    )


@pytest.fixture(scope="function")
async def test_engine():
    """In-memory database, created and dropped for every test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


# --- Marketplace collaborators ---

@pytest.fixture
def adapters():
    """One mock adapter per marketplace, shared across calls so tests can inspect them."""
    return {marketplace: MockMarketplaceAdapter() for marketplace in MarketplaceId}


@pytest.fixture
def adapter_registry(adapters):
    registry = MarketplaceRegistry("adapter")
    for marketplace, adapter in adapters.items():
        registry.register_factory(marketplace, lambda credentials, adapter=adapter: adapter)
    return registry


@pytest.fixture
def credential_provider():
    return MockCredentialProvider({
        "cred-amazon": {"seller_id": "A1", "refresh_token": "token"},
        "cred-shopify": {"shop_url": "acme.myshopify.com", "access_token": "token"},
        "cred-takealot": {"api_key": "key"},
    })


@pytest.fixture
def order_ingestion():
    return RecordingIngestion()


@pytest.fixture
def product_ingestion():
    return RecordingIngestion()


@pytest.fixture
def connection_service(session_factory, clock):
    return ConnectionService(session_factory, clock=clock)


@pytest.fixture
def orchestrator(connection_service, credential_provider, adapter_registry, order_ingestion,
                 product_ingestion, settings, clock):
    return SyncOrchestrator(
        store=connection_service,
        credential_provider=credential_provider,
        adapters=adapter_registry,
        order_ingestion=order_ingestion,
        product_ingestion=product_ingestion,
        settings=settings,
        clock=clock,
        driver=FakeDriver(),
    )


@pytest.fixture
def make_connection(connection_service, session_factory):
    """Create a connection, optionally forcing orchestrator-owned fields."""
    async def _make(tenant_id="tenant-1", marketplace_id="amazon", organization_id="org-1",
                    credential_reference=None, status="connected", **sync_fields):
        connection = await connection_service.create(
            tenant_id=tenant_id,
            organization_id=organization_id,
            marketplace_id=marketplace_id,
            credential_reference=credential_reference or f"cred-{marketplace_id}",
            status=status,
        )
        if sync_fields:
            async with session_factory() as session:
                await session.execute(
                    update(MarketplaceConnection)
                    .where(MarketplaceConnection.id == connection.id)
                    .values(**sync_fields)
                )
                await session.commit()
        return connection
    return _make


# --- Repricing ---

@pytest.fixture
def buybox_service(session_factory, settings, clock):
    return BuyBoxService(session_factory, settings=settings, clock=clock)


@pytest.fixture
def repricing_service(session_factory, clock):
    return RepricingService(session_factory, clock=clock)


@pytest.fixture
def buybox_monitor():
    return MockBuyBoxMonitor()


@pytest.fixture
def monitor_registry(buybox_monitor):
    registry = MarketplaceRegistry("Buy Box monitor")
    for marketplace in MarketplaceId:
        registry.register_factory(marketplace, lambda credentials: buybox_monitor)
    return registry


@pytest.fixture
def repricing_scheduler(repricing_service, buybox_service, connection_service, credential_provider,
                        monitor_registry, settings, clock):
    return RepricingScheduler(
        rules=repricing_service,
        buybox=buybox_service,
        connections=connection_service,
        credential_provider=credential_provider,
        monitors=monitor_registry,
        settings=settings,
        clock=clock,
        driver=FakeDriver(),
    )
