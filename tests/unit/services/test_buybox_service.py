# tests/unit/services/test_buybox_service.py
from datetime import timedelta

import pytest

from app.core.enums import BuyBoxOwnershipStatus
from app.core.exceptions import MonitoredProductNotFoundError, ValidationError
from app.core.utils import as_utc
from app.integrations.buybox import BuyBoxSnapshot
from app.models.buybox import MonitoredProduct, monitored_product_id
from app.services.buybox_service import is_due

from tests.conftest import NOW


def _product(**overrides):
    values = dict(id="p1_amazon", is_monitoring=True, monitoring_frequency=60, last_checked=None)
    values.update(overrides)
    return MonitoredProduct(**values)


# --- is_due ---

def test_never_checked_product_is_due():
    assert is_due(_product(), NOW) is True


def test_product_due_once_frequency_elapsed():
    product = _product(last_checked=NOW - timedelta(minutes=60))
    assert is_due(product, NOW) is True

    product = _product(last_checked=NOW - timedelta(minutes=59))
    assert is_due(product, NOW) is False


def test_naive_last_checked_is_treated_as_utc():
    product = _product(last_checked=(NOW - timedelta(minutes=90)).replace(tzinfo=None))
    assert is_due(product, NOW) is True


def test_non_positive_frequency_is_always_due():
    assert is_due(_product(monitoring_frequency=0, last_checked=NOW), NOW) is True
    assert is_due(_product(monitoring_frequency=-5, last_checked=NOW), NOW) is True


def test_paused_product_is_never_due():
    assert is_due(_product(is_monitoring=False), NOW) is False


# --- BuyBoxService ---

@pytest.mark.asyncio
async def test_start_monitoring_creates_product(buybox_service):
    product = await buybox_service.start_monitoring(
        product_id="p1",
        marketplace_id="amazon",
        organization_id="org-1",
        sku="SKU-1",
        marketplace_product_id="B000123",
        current_price=20.0,
        cost_price=10.0,
    )

    assert product.id == monitored_product_id("p1", "amazon") == "p1_amazon"
    assert product.monitoring_frequency == 60
    stored = await buybox_service.get("p1", "amazon")
    assert stored.is_monitoring is True
    assert stored.sku == "SKU-1"
    assert stored.snapshot_count == 0
    assert stored.buy_box_win_percentage == 0.0


@pytest.mark.asyncio
async def test_start_monitoring_is_an_upsert(buybox_service):
    await buybox_service.start_monitoring("p1", "amazon", "org-1", monitoring_frequency=30)
    await buybox_service.stop_monitoring("p1", "amazon")

    product = await buybox_service.start_monitoring("p1", "amazon", "org-1", monitoring_frequency=15)

    assert product.is_monitoring is True
    assert product.monitoring_frequency == 15
    assert len(await buybox_service.list_products()) == 1


@pytest.mark.asyncio
async def test_start_monitoring_rejects_other_organization(buybox_service):
    await buybox_service.start_monitoring("p1", "amazon", "org-1")

    with pytest.raises(ValidationError):
        await buybox_service.start_monitoring("p1", "amazon", "org-2")


@pytest.mark.asyncio
async def test_start_monitoring_rejects_unknown_marketplace(buybox_service):
    with pytest.raises(ValidationError):
        await buybox_service.start_monitoring("p1", "ebay", "org-1")


@pytest.mark.asyncio
async def test_stop_monitoring_unknown_product(buybox_service):
    with pytest.raises(MonitoredProductNotFoundError):
        await buybox_service.stop_monitoring("nope", "amazon")


@pytest.mark.asyncio
async def test_hourly_product_due_scenario(buybox_service, clock):
    product = await buybox_service.start_monitoring("p1", "amazon", "org-1", monitoring_frequency=60)

    # Never checked
    assert [p.id for p in await buybox_service.get_products_due(NOW)] == [product.id]

    await buybox_service.mark_checked(product, NOW)
    assert await buybox_service.get_products_due(NOW + timedelta(minutes=30)) == []

    due = await buybox_service.get_products_due(NOW + timedelta(minutes=61))
    assert [p.id for p in due] == [product.id]

    # Reading the due list does not claim anything
    again = await buybox_service.get_products_due(NOW + timedelta(minutes=61))
    assert [p.id for p in again] == [product.id]


@pytest.mark.asyncio
async def test_products_due_filters(buybox_service):
    await buybox_service.start_monitoring("p1", "amazon", "org-1")
    await buybox_service.start_monitoring("p2", "shopify", "org-2")
    await buybox_service.start_monitoring("p3", "amazon", "org-1")
    await buybox_service.stop_monitoring("p3", "amazon")

    due = await buybox_service.get_products_due(NOW, organization_id="org-1")

    assert [p.product_id for p in due] == ["p1"]


@pytest.mark.asyncio
async def test_list_products_filters(buybox_service):
    await buybox_service.start_monitoring("p1", "amazon", "org-1")
    await buybox_service.start_monitoring("p1", "takealot", "org-1")
    await buybox_service.start_monitoring("p2", "amazon", "org-2")

    assert len(await buybox_service.list_products(organization_id="org-1")) == 2
    assert len(await buybox_service.list_products(marketplace_id="amazon")) == 2
    assert len(await buybox_service.list_products(organization_id="org-1", marketplace_id="takealot")) == 1


@pytest.mark.asyncio
async def test_record_snapshot_tracks_win_percentage(buybox_service):
    product = await buybox_service.start_monitoring("p1", "amazon", "org-1", current_price=25.0)

    won = BuyBoxSnapshot(ownership_status=BuyBoxOwnershipStatus.OWNED, our_price=24.5, buy_box_price=24.5)
    lost = BuyBoxSnapshot(ownership_status=BuyBoxOwnershipStatus.NOT_OWNED, buy_box_price=22.0)

    await buybox_service.record_snapshot(product, won, NOW)
    await buybox_service.record_snapshot(product, lost, NOW)
    updated = await buybox_service.record_snapshot(product, lost, NOW + timedelta(minutes=5))

    assert updated.snapshot_count == 3
    assert updated.win_count == 1
    assert updated.buy_box_win_percentage == 33.33
    assert updated.current_price == 24.5
    assert updated.last_snapshot["ownership_status"] == BuyBoxOwnershipStatus.NOT_OWNED.value
    assert as_utc(updated.last_checked) == NOW + timedelta(minutes=5)


@pytest.mark.asyncio
async def test_set_price(buybox_service):
    product = await buybox_service.start_monitoring("p1", "amazon", "org-1", current_price=25.0)

    await buybox_service.set_price(product, 23.99)

    assert (await buybox_service.get("p1", "amazon")).current_price == 23.99
