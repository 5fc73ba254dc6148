# tests/unit/services/sync/test_product_sync.py
import pytest

from syncbridge.core.enums import ChangeOperation, MappingKind, MappingStatus, PlatformName
from syncbridge.core.exceptions import PlatformAPIError
from syncbridge.services.sync.product_sync import ProductSyncService
from syncbridge.services.sync.types import SyncFilters

from tests.conftest import USER_ID


@pytest.fixture
def service(sync_context):
    return ProductSyncService(sync_context)


@pytest.mark.asyncio
async def test_creates_missing_erp_item(service, sync_context, storefront, erp, sample_shopify_product):
    # Arrange
    storefront.add_product(sample_shopify_product)

    # Act
    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    # Assert
    assert (result.items_processed, result.items_succeeded, result.items_failed) == (1, 1, 0)
    assert len(erp.items) == 1
    item = erp.items["1"]
    assert item["itemId"] == "TG-123"
    assert item["displayName"] == "Test Guitar"
    assert item["basePrice"] == 999.99
    assert item["salesDescription"] == "A test guitar"

    mapping = await sync_context.mappings.get_mapping(MappingKind.ITEM, USER_ID, PlatformName.SHOPIFY, "101")
    assert mapping.target_system_id == "1"
    assert mapping.sync_status == MappingStatus.COMPLETED.value
    assert mapping.sku == "TG-123"

    reverse = await sync_context.mappings.get_mapping(MappingKind.ITEM, USER_ID, PlatformName.NETSUITE, "1")
    assert reverse.target_system_id == "101"

    changes = await sync_context.change_tracker.get_entity_changes(USER_ID, "1")
    assert [c.operation for c in changes] == [ChangeOperation.CREATE.value]
    assert changes[0].triggered_by == "shopify:101"


@pytest.mark.asyncio
async def test_second_run_skips_unchanged_items(service, storefront, erp, sample_shopify_product):
    storefront.add_product(sample_shopify_product)
    await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    assert result.items_succeeded == 1
    assert result.items_skipped == 1
    assert len(erp.calls_to("create_item")) == 1
    assert erp.calls_to("update_item") == []


@pytest.mark.asyncio
async def test_field_change_updates_target_with_snapshots(service, sync_context, storefront, erp, sample_shopify_product):
    storefront.add_product(sample_shopify_product)
    await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())
    storefront.products["101"]["title"] = "Renamed Guitar"

    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    assert result.items_skipped == 0
    assert erp.calls_to("update_item") == [("update_item", "1", {"displayName": "Renamed Guitar"})]
    assert erp.items["1"]["displayName"] == "Renamed Guitar"

    changes = await sync_context.change_tracker.get_entity_changes(USER_ID, "1")
    update = changes[0]
    assert update.field_name == "name"
    assert (update.old_value, update.new_value) == ("Test Guitar", "Renamed Guitar")

    before = await sync_context.snapshots.get(update.before_snapshot_id)
    after = await sync_context.snapshots.get(update.after_snapshot_id)
    assert before.data["name"] == "Test Guitar"
    assert after.data["name"] == "Renamed Guitar"
    assert after.previous_snapshot_id == before.id


@pytest.mark.asyncio
async def test_reverse_pass_does_not_duplicate_created_items(service, storefront, erp, sample_shopify_product):
    storefront.add_product(sample_shopify_product)
    await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    result = await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters())

    assert result.items_processed == 1
    assert result.items_skipped == 1
    assert storefront.calls_to("create_product") == []
    assert len(storefront.products) == 1


@pytest.mark.asyncio
async def test_erp_item_is_created_in_storefront(service, sync_context, storefront, erp):
    erp.add_item("201", "SKU-201", "Bass Amp", 450.0, salesDescription="Tube amp")

    result = await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters())

    assert result.items_succeeded == 1
    payload = storefront.calls_to("create_product")[0][1]
    assert payload["title"] == "Bass Amp"
    assert payload["body_html"] == "Tube amp"
    assert payload["variants"][0] == {"sku": "SKU-201", "price": "450.00", "inventory_management": "shopify"}

    mapping = await sync_context.mappings.get_mapping(MappingKind.ITEM, USER_ID, PlatformName.NETSUITE, "201")
    assert mapping.target_system_id == "500"


@pytest.mark.asyncio
async def test_deleted_target_is_recreated_and_rebound(service, sync_context, storefront, erp, sample_shopify_product):
    storefront.add_product(sample_shopify_product)
    await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())
    del erp.items["1"]

    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    assert result.items_failed == 0
    assert len(erp.calls_to("create_item")) == 2
    mapping = await sync_context.mappings.get_mapping(MappingKind.ITEM, USER_ID, PlatformName.SHOPIFY, "101")
    assert mapping.target_system_id == "2"


@pytest.mark.asyncio
async def test_item_failure_is_isolated(service, sync_context, storefront, erp, sample_shopify_product):
    storefront.add_product(sample_shopify_product)
    storefront.add_product({**sample_shopify_product, "id": 102, "variants": [
        {"id": 9002, "sku": "TG-456", "price": "10.00", "inventory_item_id": 7002, "inventory_quantity": 1},
    ]})
    erp.fail_next("create_item", PlatformAPIError("Invalid field value", status_code=400, platform="netsuite"))

    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters())

    assert result.items_processed == 2
    assert result.items_failed == 1
    assert result.items_succeeded == 1
    # Both records are in flight at once, so either may hit the queued failure
    failed_id = result.errors[0].item_id
    assert failed_id in ("101", "102")
    assert "Invalid field value" in result.errors[0].error

    failed = await sync_context.mappings.get_mapping(MappingKind.ITEM, USER_ID, PlatformName.SHOPIFY, failed_id)
    assert failed.sync_status == MappingStatus.FAILED.value
    assert failed.target_system_id is None


@pytest.mark.asyncio
async def test_product_ids_filter_limits_listing(service, storefront, erp, sample_shopify_product):
    storefront.add_product(sample_shopify_product)
    storefront.add_product({**sample_shopify_product, "id": 102})

    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters(product_ids=["102"]))

    assert result.items_processed == 1
    assert storefront.calls_to("list_products") == [("list_products", ["102"], None)]
