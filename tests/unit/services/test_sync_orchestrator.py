# tests/unit/services/test_sync_orchestrator.py
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.enums import ConnectionStatus, SyncStatus
from app.core.exceptions import ConnectionNotFoundError, SyncError, ValidationError
from app.core.utils import EPOCH, as_utc
from app.integrations.registry import MarketplaceRegistry
from app.services.sync_orchestrator import SyncOrchestrator

from tests.conftest import NOW
from tests.mocks.mock_marketplace import FakeDriver, MockMarketplaceAdapter, RecordingIngestion

T0 = NOW - timedelta(days=1)


# --- sync_one ---

@pytest.mark.asyncio
async def test_sync_one_inactive_connection_never_reaches_adapter(orchestrator, make_connection, adapters, credential_provider):
    for status in (ConnectionStatus.DISCONNECTED.value, ConnectionStatus.ERROR.value):
        connection = await make_connection(tenant_id=f"tenant-{status}", status=status)

        result = await orchestrator.sync_one(connection.id)

        assert result.success is False
        assert status in result.message

    assert adapters["amazon"].call_count == 0
    assert credential_provider.calls == []


@pytest.mark.asyncio
async def test_sync_one_unknown_connection_raises(orchestrator):
    with pytest.raises(ConnectionNotFoundError):
        await orchestrator.sync_one("does-not-exist")


@pytest.mark.asyncio
async def test_two_orders_no_products_scenario(orchestrator, make_connection, adapters, order_ingestion,
                                               product_ingestion, connection_service):
    connection = await make_connection(marketplace_id="shopify")
    adapters["shopify"].orders = [{"id": "1001", "total": 10}, {"id": "1002", "total": 20}]

    result = await orchestrator.sync_one(connection.id)

    assert result.success is True
    assert result.orders_processed == 2
    assert result.products_processed == 0

    assert len(order_ingestion.calls) == 1
    assert order_ingestion.calls[0]["records"] == adapters["shopify"].orders
    assert order_ingestion.calls[0]["marketplace_id"] == "shopify"
    assert order_ingestion.calls[0]["tenant_id"] == "tenant-1"
    assert product_ingestion.calls == []

    # First sync fetches everything with the configured page size
    assert adapters["shopify"].order_calls == [{"since": EPOCH, "limit": 100}]
    assert adapters["shopify"].product_calls == [{"since": EPOCH, "limit": 100}]

    stored = await connection_service.get(connection.id)
    assert stored.sync_status == SyncStatus.SUCCESS.value
    assert as_utc(stored.last_synced_at) == NOW
    assert as_utc(stored.last_checked) == NOW
    assert stored.last_error is None
    assert stored.sync_started_at is None


@pytest.mark.asyncio
async def test_fetch_uses_existing_watermark(orchestrator, make_connection, adapters):
    connection = await make_connection(sync_status=SyncStatus.SUCCESS.value, last_synced_at=T0)

    await orchestrator.sync_one(connection.id)

    assert adapters["amazon"].order_calls[0]["since"] == T0
    assert adapters["amazon"].product_calls[0]["since"] == T0


@pytest.mark.asyncio
async def test_double_failure_keeps_watermark(orchestrator, make_connection, adapters, connection_service):
    connection = await make_connection(sync_status=SyncStatus.SUCCESS.value, last_synced_at=T0)
    adapters["amazon"].fail_orders = True
    adapters["amazon"].fail_products = True

    result = await orchestrator.sync_one(connection.id)

    assert result.success is False
    assert "both orders and products" in result.message

    stored = await connection_service.get(connection.id)
    assert stored.sync_status == SyncStatus.ERROR.value
    assert as_utc(stored.last_synced_at) == T0
    assert "both orders and products" in stored.last_error


@pytest.mark.asyncio
async def test_partial_success_advances_watermark(orchestrator, make_connection, adapters, connection_service):
    connection = await make_connection(sync_status=SyncStatus.SUCCESS.value, last_synced_at=T0)
    adapters["amazon"].orders = [{"id": "A-1"}]
    adapters["amazon"].fail_products = True

    result = await orchestrator.sync_one(connection.id)

    assert result.success is False
    stored = await connection_service.get(connection.id)
    assert stored.sync_status == SyncStatus.ERROR.value
    assert as_utc(stored.last_synced_at) == NOW
    assert stored.last_error.startswith("Failed to fetch products from Amazon")


@pytest.mark.asyncio
async def test_partial_success_watermark_policy_can_be_disabled(
    connection_service, credential_provider, adapter_registry, order_ingestion, product_ingestion,
    settings, clock, make_connection, adapters,
):
    strict_settings = settings.model_copy(update={"SYNC_ADVANCE_WATERMARK_ON_PARTIAL": False})
    orchestrator = SyncOrchestrator(
        connection_service, credential_provider, adapter_registry, order_ingestion, product_ingestion,
        settings=strict_settings, clock=clock, driver=FakeDriver(),
    )
    connection = await make_connection(last_synced_at=T0)
    adapters["amazon"].fail_orders = True

    await orchestrator.sync_one(connection.id)

    stored = await connection_service.get(connection.id)
    assert stored.sync_status == SyncStatus.ERROR.value
    assert as_utc(stored.last_synced_at) == T0
    assert "orders" in stored.last_error


@pytest.mark.asyncio
async def test_ingestion_failure_is_a_side_failure(orchestrator, make_connection, adapters, order_ingestion,
                                                   connection_service):
    connection = await make_connection()
    adapters["amazon"].orders = [{"id": "A-1"}]
    order_ingestion.should_fail = True

    result = await orchestrator.sync_one(connection.id)

    assert result.success is False
    assert "orders" in result.message
    stored = await connection_service.get(connection.id)
    assert stored.sync_status == SyncStatus.ERROR.value


@pytest.mark.asyncio
async def test_watermark_never_moves_backwards(orchestrator, make_connection, connection_service):
    future = NOW + timedelta(hours=1)
    connection = await make_connection(last_synced_at=future, last_checked=future)

    result = await orchestrator.sync_one(connection.id)

    assert result.success is True
    stored = await connection_service.get(connection.id)
    assert as_utc(stored.last_synced_at) == future
    assert as_utc(stored.last_checked) == future


@pytest.mark.asyncio
async def test_in_progress_is_persisted_before_fetching(orchestrator, make_connection, adapters, connection_service):
    connection = await make_connection()
    seen = {}

    async def fetch_orders(since, limit):
        stored = await connection_service.get(connection.id)
        seen["sync_status"] = stored.sync_status
        seen["last_checked"] = as_utc(stored.last_checked)
        return []

    adapters["amazon"].fetch_orders = fetch_orders

    await orchestrator.sync_one(connection.id)

    assert seen == {"sync_status": SyncStatus.IN_PROGRESS.value, "last_checked": NOW}


@pytest.mark.asyncio
async def test_adapter_timeout_is_a_local_error(orchestrator, make_connection, adapters, connection_service):
    connection = await make_connection()
    orchestrator.call_timeout = 0.05

    async def hang(since, limit):
        await asyncio.sleep(5)
        return []

    adapters["amazon"].fetch_products = hang

    result = await orchestrator.sync_one(connection.id)

    assert result.success is False
    assert "timed out" in result.message
    stored = await connection_service.get(connection.id)
    assert stored.sync_status == SyncStatus.ERROR.value


@pytest.mark.asyncio
async def test_missing_credentials_fail_only_that_connection(orchestrator, make_connection, adapters, connection_service):
    broken = await make_connection(tenant_id="tenant-broken", credential_reference="cred-missing")
    healthy = await make_connection(tenant_id="tenant-ok", marketplace_id="shopify")

    report = await orchestrator.run_cycle()

    assert report.total_connections == 2
    assert report.successful_connections == 1
    assert report.failed_connections == 1
    assert report.success is True
    assert report.errors[0].connection_id == broken.id
    assert "cred-missing" in report.errors[0].error

    assert adapters["amazon"].call_count == 0
    assert (await connection_service.get(broken.id)).sync_status == SyncStatus.ERROR.value
    assert (await connection_service.get(healthy.id)).sync_status == SyncStatus.SUCCESS.value


@pytest.mark.asyncio
async def test_unregistered_marketplace_is_a_local_error(
    connection_service, credential_provider, order_ingestion, product_ingestion, settings, clock, make_connection,
):
    registry = MarketplaceRegistry("adapter")
    registry.register_factory("amazon", lambda credentials: MockMarketplaceAdapter(credentials))
    orchestrator = SyncOrchestrator(
        connection_service, credential_provider, registry, order_ingestion, product_ingestion,
        settings=settings, clock=clock, driver=FakeDriver(),
    )
    credential_provider.credentials["cred-xero"] = {"token": "x"}
    connection = await make_connection(marketplace_id="xero")

    result = await orchestrator.sync_one(connection.id)

    assert result.success is False
    assert "No adapter registered" in result.message


# --- run_cycle ---

@pytest.mark.asyncio
async def test_cycle_all_success(orchestrator, make_connection, adapters):
    await make_connection(tenant_id="t1", marketplace_id="amazon")
    await make_connection(tenant_id="t2", marketplace_id="shopify")
    await make_connection(tenant_id="t3", marketplace_id="takealot")
    adapters["shopify"].products = [{"id": "P-1"}]

    report = await orchestrator.run_cycle()

    assert report.success is True
    assert report.total_connections == 3
    assert report.successful_connections == 3
    assert report.failed_connections == 0
    assert report.errors == []
    assert orchestrator.last_report is report


@pytest.mark.asyncio
async def test_cycle_all_failure(orchestrator, make_connection, adapters):
    await make_connection(tenant_id="t1", marketplace_id="amazon")
    await make_connection(tenant_id="t2", marketplace_id="shopify")
    for adapter in adapters.values():
        adapter.fail_orders = True
        adapter.fail_products = True

    report = await orchestrator.run_cycle()

    assert report.success is False
    assert report.successful_connections == 0
    assert report.failed_connections == 2
    assert {e.marketplace_id for e in report.errors} == {"amazon", "shopify"}


@pytest.mark.asyncio
async def test_empty_cycle_is_successful(orchestrator):
    report = await orchestrator.run_cycle()

    assert report.total_connections == 0
    assert report.success is True


@pytest.mark.asyncio
async def test_cycle_skips_inactive_connections(orchestrator, make_connection, adapters):
    await make_connection(tenant_id="t1", status=ConnectionStatus.DISCONNECTED.value)
    await make_connection(tenant_id="t2", marketplace_id="shopify")

    report = await orchestrator.run_cycle()

    assert report.total_connections == 1
    assert adapters["amazon"].call_count == 0


@pytest.mark.asyncio
async def test_listing_failure_propagates(orchestrator, connection_service, mocker):
    mocker.patch.object(connection_service, "list_active", AsyncMock(side_effect=RuntimeError("database down")))

    with pytest.raises(SyncError, match="database down"):
        await orchestrator.run_cycle()


@pytest.mark.asyncio
async def test_connection_deleted_mid_cycle_is_skipped(orchestrator, make_connection, connection_service, mocker):
    gone = await make_connection(tenant_id="t1")
    kept = await make_connection(tenant_id="t2", marketplace_id="shopify")
    listed = await connection_service.list_active()
    await connection_service.delete(gone.id)
    mocker.patch.object(connection_service, "list_active", AsyncMock(return_value=listed))

    report = await orchestrator.run_cycle()

    assert report.skipped_connections == [gone.id]
    assert report.successful_connections == 1
    assert report.failed_connections == 0
    assert (await connection_service.get(kept.id)).sync_status == SyncStatus.SUCCESS.value


@pytest.mark.asyncio
async def test_stale_in_progress_is_reset_at_cycle_start(orchestrator, make_connection, connection_service):
    stale = await make_connection(
        tenant_id="t1",
        status=ConnectionStatus.DISCONNECTED.value,
        sync_status=SyncStatus.IN_PROGRESS.value,
        sync_started_at=NOW - timedelta(hours=3),
    )
    recent = await make_connection(
        tenant_id="t2",
        marketplace_id="shopify",
        status=ConnectionStatus.DISCONNECTED.value,
        sync_status=SyncStatus.IN_PROGRESS.value,
        sync_started_at=NOW - timedelta(minutes=5),
    )

    await orchestrator.run_cycle()

    reset = await connection_service.get(stale.id)
    assert reset.sync_status == SyncStatus.ERROR.value
    assert reset.last_error == "Sync interrupted before completion"
    assert (await connection_service.get(recent.id)).sync_status == SyncStatus.IN_PROGRESS.value


@pytest.mark.asyncio
async def test_cycle_respects_concurrency_cap(credential_provider, settings, clock):
    connections = [
        MagicMock(id=f"c{i}", tenant_id=f"t{i}", marketplace_id="amazon",
                  credential_reference="cred-amazon", last_synced_at=None)
        for i in range(5)
    ]
    store = MagicMock()
    store.list_active = AsyncMock(return_value=connections)
    store.reset_stale_in_progress = AsyncMock(return_value=0)
    store.mark_in_progress = AsyncMock(return_value=True)
    store.record_outcome = AsyncMock(return_value=True)

    in_flight = {"now": 0, "max": 0}

    class SlowAdapter(MockMarketplaceAdapter):
        async def fetch_orders(self, since, limit):
            in_flight["now"] += 1
            in_flight["max"] = max(in_flight["max"], in_flight["now"])
            await asyncio.sleep(0.01)
            in_flight["now"] -= 1
            return []

    registry = MarketplaceRegistry("adapter")
    registry.register_factory("amazon", SlowAdapter)
    orchestrator = SyncOrchestrator(
        store, credential_provider, registry, RecordingIngestion(), RecordingIngestion(),
        settings=settings.model_copy(update={"SYNC_MAX_CONCURRENT": 2}), clock=clock, driver=FakeDriver(),
    )

    report = await orchestrator.run_cycle()

    assert report.successful_connections == 5
    assert in_flight["max"] == 2
    assert store.mark_in_progress.await_count == 5


# --- manual triggers ---

@pytest.mark.asyncio
async def test_force_many_isolates_failures(orchestrator, make_connection):
    connection = await make_connection()

    results = await orchestrator.force_many([connection.id, "missing-id"])

    assert results[0]["connection_id"] == connection.id
    assert results[0]["success"] is True
    assert results[0]["message"] == "Synced 0 orders and 0 products from Amazon"
    assert results[1]["connection_id"] == "missing-id"
    assert results[1]["success"] is False
    assert "not found" in results[1]["message"]


# --- driver lifecycle ---

@pytest.mark.asyncio
async def test_start_twice_is_a_noop(orchestrator):
    orchestrator.start(10)
    first = orchestrator.driver.started_with
    orchestrator.start(30)

    assert orchestrator.driver.started_with is first
    assert orchestrator.interval_minutes == 10
    assert orchestrator.status()["is_running"] is True


@pytest.mark.asyncio
async def test_set_interval_while_running_restarts_timer(orchestrator):
    orchestrator.start()
    orchestrator.set_interval(30)

    status = orchestrator.status()
    assert status["is_running"] is True
    assert status["is_scheduled"] is True
    assert status["interval_minutes"] == 30
    assert orchestrator.driver.rescheduled_to == 30


@pytest.mark.asyncio
async def test_set_interval_rejects_non_positive(orchestrator):
    for bad in (0, -5, None, "10", True, float("nan"), float("inf"), 1e308, 10081):
        with pytest.raises(ValidationError):
            orchestrator.set_interval(bad)
    assert orchestrator.interval_minutes == 15


@pytest.mark.asyncio
async def test_stop_is_idempotent(orchestrator):
    orchestrator.stop()
    orchestrator.start()
    orchestrator.stop()
    orchestrator.stop()

    status = orchestrator.status()
    assert status["is_running"] is False
    assert status["is_scheduled"] is False
    assert orchestrator.driver.stop_calls == 1


@pytest.mark.asyncio
async def test_status_has_no_side_effects(orchestrator):
    before = orchestrator.status()
    after = orchestrator.status()

    assert before == after
    assert before["is_running"] is False
    assert before["interval_minutes"] == 15
    assert before["last_report"] is None


@pytest.mark.asyncio
async def test_validate_scheduler_request(orchestrator):
    assert orchestrator.validate_scheduler_request({"x-scheduler-secret": "test-scheduler-secret"}) is True
    assert orchestrator.validate_scheduler_request({"X-Scheduler-Secret": "test-scheduler-secret"}) is True
    assert orchestrator.validate_scheduler_request({"x-scheduler-secret": "wrong"}) is False
    assert orchestrator.validate_scheduler_request({}) is False
