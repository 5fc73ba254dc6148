# tests/unit/services/sync/test_order_sync.py
import pytest

from syncbridge.core.enums import MappingKind, MappingStatus, PlatformName, SnapshotType
from syncbridge.services.sync.order_sync import OrderSyncService, sales_order_key
from syncbridge.services.sync.types import SyncFilters

from tests.conftest import USER_ID


@pytest.fixture
def service(sync_context):
    return OrderSyncService(sync_context)


@pytest.fixture
def shopify_order():
    return {
        "id": 5001,
        "name": "#1001",
        "total_price": "100.00",
        "currency": "EUR",
        "created_at": "2026-01-01T10:00:00Z",
        "customer": {"id": 77, "email": "buyer@example.com", "first_name": "Ada", "last_name": "Byron"},
        "line_items": [{"product_id": 101, "sku": "TG-123", "quantity": 2, "price": "50.00"}],
    }


@pytest.fixture
async def mapped_item(sync_context):
    mapping = await sync_context.mappings.find_or_create_mapping(
        MappingKind.ITEM, USER_ID, PlatformName.SHOPIFY, "101", PlatformName.NETSUITE
    )
    return await sync_context.mappings.bind_target(MappingKind.ITEM, mapping.id, "201")


@pytest.mark.asyncio
async def test_order_becomes_sales_order_in_base_currency(service, sync_context, storefront, erp, shopify_order, mapped_item):
    # Arrange
    storefront.orders.append(shopify_order)

    # Act
    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    # Assert
    assert (result.items_processed, result.items_succeeded, result.items_failed) == (1, 1, 0)
    payload = erp.calls_to("create_sales_order")[0][1]
    assert payload["otherRefNum"] == "#1001"
    assert payload["tranDate"] == "2026-01-01"
    assert payload["currency"] == {"refName": "USD"}
    assert payload["exchangeRate"] == pytest.approx(1.1)
    assert payload["item"]["items"] == [{"item": {"id": "201"}, "quantity": 2, "rate": 55.0}]

    customer_id = payload["entity"]["id"]
    assert erp.customers[customer_id]["email"] == "buyer@example.com"
    assert erp.customers[customer_id]["firstName"] == "Ada"

    mapping = await sync_context.mappings.get_mapping(MappingKind.ORDER, USER_ID, PlatformName.SHOPIFY, "5001")
    assert mapping.sync_status == MappingStatus.COMPLETED.value
    assert mapping.order_number == "#1001"
    assert mapping.currency == "EUR"
    assert mapping.total_amount == 100.0
    assert mapping.converted_amount == 110.0
    assert mapping.exchange_rate == pytest.approx(1.1)
    assert mapping.base_currency == "USD"


@pytest.mark.asyncio
async def test_resync_updates_existing_sales_order(service, storefront, erp, shopify_order, mapped_item):
    storefront.orders.append(shopify_order)
    await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    assert result.items_succeeded == 1
    assert len(erp.calls_to("create_sales_order")) == 1
    assert len(erp.calls_to("create_customer")) == 1
    assert len(erp.calls_to("find_customer_by_email")) == 1
    updates = erp.calls_to("update_sales_order")
    assert len(updates) == 1
    assert updates[0][1] in erp.sales_orders


@pytest.mark.asyncio
async def test_existing_customer_is_reused(service, storefront, erp, shopify_order, mapped_item):
    erp.customers["C9"] = {"id": "C9", "email": "buyer@example.com"}
    storefront.orders.append(shopify_order)

    await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    assert erp.calls_to("create_customer") == []
    assert erp.calls_to("create_sales_order")[0][1]["entity"] == {"id": "C9"}


@pytest.mark.asyncio
async def test_unmapped_line_item_fails_the_order(service, sync_context, storefront, erp, shopify_order):
    storefront.orders.append(shopify_order)

    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    assert result.items_failed == 1
    assert "No NetSuite item mapped" in result.errors[0].error
    assert erp.calls_to("create_sales_order") == []

    mapping = await sync_context.mappings.get_mapping(MappingKind.ORDER, USER_ID, PlatformName.SHOPIFY, "5001")
    assert mapping.sync_status == MappingStatus.FAILED.value


@pytest.mark.asyncio
async def test_line_items_resolve_through_reverse_mapping(service, sync_context, storefront, erp, shopify_order):
    # Item originally created in NetSuite and pushed to Shopify as product 101
    mapping = await sync_context.mappings.find_or_create_mapping(
        MappingKind.ITEM, USER_ID, PlatformName.NETSUITE, "301", PlatformName.SHOPIFY
    )
    await sync_context.mappings.bind_target(MappingKind.ITEM, mapping.id, "101")
    storefront.orders.append(shopify_order)

    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    assert result.items_succeeded == 1
    assert erp.calls_to("create_sales_order")[0][1]["item"]["items"][0]["item"] == {"id": "301"}


@pytest.mark.asyncio
async def test_unknown_currency_keeps_original_amount(service, sync_context, storefront, erp, shopify_order, mapped_item):
    storefront.orders.append({**shopify_order, "currency": "JPY"})

    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    assert result.items_succeeded == 1
    assert any("JPY" in w for w in result.warnings)
    payload = erp.calls_to("create_sales_order")[0][1]
    assert payload["exchangeRate"] == 1.0
    assert payload["item"]["items"][0]["rate"] == 50.0

    mapping = await sync_context.mappings.get_mapping(MappingKind.ORDER, USER_ID, PlatformName.SHOPIFY, "5001")
    assert mapping.converted_amount == 100.0


@pytest.mark.asyncio
async def test_order_without_email_is_rejected(service, storefront, erp, shopify_order, mapped_item):
    storefront.orders.append({**shopify_order, "customer": None})

    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    assert result.items_failed == 1
    assert "no customer email" in result.errors[0].error
    assert erp.calls_to("create_customer") == []


@pytest.mark.asyncio
async def test_reverse_direction_is_skipped_with_warning(service, storefront):
    result = await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters())

    assert result.items_processed == 0
    assert result.warnings
    assert storefront.calls_to("list_orders") == []


@pytest.mark.asyncio
async def test_two_orders_from_one_new_customer_create_it_once(service, sync_context, storefront, erp, shopify_order, mapped_item):
    storefront.orders.append(shopify_order)
    storefront.orders.append({**shopify_order, "id": 5002, "name": "#1002"})

    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    assert (result.items_succeeded, result.items_failed) == (2, 0)
    assert len(erp.calls_to("create_customer")) == 1
    assert len(erp.customers) == 1
    customer_id = next(iter(erp.customers))
    assert [call[1]["entity"] for call in erp.calls_to("create_sales_order")] == [{"id": customer_id}] * 2

    mapping = await sync_context.mappings.get_mapping(MappingKind.CUSTOMER, USER_ID, PlatformName.SHOPIFY, "77")
    assert mapping.target_system_id == customer_id


@pytest.mark.asyncio
async def test_sales_order_is_snapshotted_before_update(service, sync_context, storefront, erp, shopify_order, mapped_item):
    storefront.orders.append(shopify_order)
    await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())
    order_id = next(iter(erp.sales_orders))
    original = dict(erp.sales_orders[order_id])

    storefront.orders[0] = {**shopify_order, "total_price": "120.00"}
    await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    snapshot = await sync_context.snapshots.get_latest(USER_ID, sales_order_key(order_id), PlatformName.NETSUITE)
    assert snapshot.snapshot_type == SnapshotType.PRE_SYNC.value
    assert snapshot.data["otherRefNum"] == original["otherRefNum"]
    assert sync_context.snapshots.verify(snapshot)

    changes = await sync_context.change_tracker.get_entity_changes(USER_ID, order_id)
    update = [c for c in changes if c.operation == "update"]
    assert len(update) == 1
    assert update[0].before_snapshot_id == snapshot.id
