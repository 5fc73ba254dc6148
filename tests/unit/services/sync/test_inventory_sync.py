# tests/unit/services/sync/test_inventory_sync.py
import pytest
from sqlalchemy import select

from syncbridge.core.enums import MappingKind, PlatformName, SnapshotType
from syncbridge.models.snapshot import ProductSnapshot
from syncbridge.models.sync_log import SystemMetric
from syncbridge.services.sync.inventory_sync import InventorySyncService, inventory_key
from syncbridge.services.sync.types import SyncFilters

from tests.conftest import USER_ID


@pytest.fixture
def service(sync_context):
    return InventorySyncService(sync_context)


@pytest.fixture
async def linked_item(sync_context, storefront, erp, sample_shopify_product):
    """Shopify product 101 mapped to NetSuite item 201, stock 100 in NetSuite."""
    storefront.add_product(sample_shopify_product)
    erp.add_item("201", "TG-123", "Test Guitar", 999.99, quantity=100)
    mapping = await sync_context.mappings.find_or_create_mapping(
        MappingKind.ITEM, USER_ID, PlatformName.SHOPIFY, "101", PlatformName.NETSUITE
    )
    await sync_context.mappings.bind_target(MappingKind.ITEM, mapping.id, "201")
    return mapping


@pytest.mark.asyncio
async def test_difference_within_threshold_is_left_alone(service, storefront, linked_item):
    storefront.levels[("7001", "1")] = 97

    result = await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters(), threshold=5)

    assert result.items_processed == 1
    assert result.quantity_updates == 0
    assert result.items_skipped == 1
    assert storefront.calls_to("set_inventory_level") == []


@pytest.mark.asyncio
async def test_difference_over_threshold_is_written(service, sync_context, storefront, session_factory, linked_item):
    storefront.levels[("7001", "1")] = 80

    result = await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters(), threshold=5)

    assert result.quantity_updates == 1
    assert storefront.calls_to("set_inventory_level") == [("set_inventory_level", "7001", "1", 100)]
    assert storefront.levels[("7001", "1")] == 100

    changes = await sync_context.change_tracker.get_entity_changes(USER_ID, "101")
    assert len(changes) == 1
    assert changes[0].field_name == "inventory_quantity"
    assert (changes[0].old_value, changes[0].new_value) == (80, 100)

    async with session_factory() as session:
        metrics = (await session.execute(select(SystemMetric))).scalars().all()
    assert [(m.metric_name, m.metric_value, m.platform) for m in metrics] == [("inventory_sync", 20, "shopify")]


@pytest.mark.asyncio
async def test_full_sync_ignores_threshold(service, storefront, linked_item):
    storefront.levels[("7001", "1")] = 98

    result = await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters(full_sync=True), threshold=5)

    assert result.quantity_updates == 1
    assert storefront.levels[("7001", "1")] == 100


@pytest.mark.asyncio
async def test_equal_quantities_never_write(service, storefront, linked_item):
    storefront.levels[("7001", "1")] = 100

    result = await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters(full_sync=True))

    assert result.quantity_updates == 0
    assert storefront.calls_to("set_inventory_level") == []


@pytest.mark.asyncio
async def test_threshold_falls_back_to_filters_then_settings(service, storefront, linked_item):
    storefront.levels[("7001", "1")] = 90

    result = await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters(inventory_threshold=15))
    assert result.quantity_updates == 0

    result = await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters())
    assert result.quantity_updates == 1


@pytest.mark.asyncio
async def test_storefront_to_erp_sets_erp_quantity(service, erp, storefront, linked_item):
    storefront.levels[("7001", "1")] = 42

    result = await service.sync(PlatformName.SHOPIFY, PlatformName.NETSUITE, SyncFilters(), threshold=0)

    assert result.quantity_updates == 1
    assert erp.calls_to("set_inventory_quantity") == [("set_inventory_quantity", "201", 42)]


@pytest.mark.asyncio
async def test_pairs_are_deduplicated_across_directions(service, sync_context, storefront, linked_item):
    reverse = await sync_context.mappings.find_or_create_mapping(
        MappingKind.ITEM, USER_ID, PlatformName.NETSUITE, "201", PlatformName.SHOPIFY
    )
    await sync_context.mappings.bind_target(MappingKind.ITEM, reverse.id, "101")
    storefront.levels[("7001", "1")] = 50

    result = await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters(), threshold=0)

    assert result.items_processed == 1
    assert len(storefront.calls_to("set_inventory_level")) == 1


@pytest.mark.asyncio
async def test_missing_storefront_product_fails_the_item(service, storefront, linked_item):
    del storefront.products["101"]

    result = await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters(), threshold=0)

    assert result.items_failed == 1
    assert result.errors[0].item_id == "201"
    assert "no longer exists" in result.errors[0].error


@pytest.mark.asyncio
async def test_discrepancy_report_does_not_write(service, storefront, linked_item):
    storefront.levels[("7001", "1")] = 93

    report = await service.get_inventory_discrepancies(threshold=5)

    assert report == [{
        "shopify_id": "101",
        "netsuite_id": "201",
        "shopify_quantity": 93,
        "netsuite_quantity": 100,
        "difference": 7,
    }]
    assert storefront.calls_to("set_inventory_level") == []
    assert await service.get_inventory_discrepancies(threshold=10) == []


@pytest.mark.asyncio
async def test_quantity_write_is_snapshotted_both_sides(service, sync_context, storefront, session_factory, linked_item):
    storefront.levels[("7001", "1")] = 80

    await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters(), threshold=5)

    async with session_factory() as session:
        snapshots = (await session.execute(
            select(ProductSnapshot).where(ProductSnapshot.entity_id == inventory_key("101")).order_by(ProductSnapshot.id)
        )).scalars().all()
    assert [(s.snapshot_type, s.data["inventory_quantity"]) for s in snapshots] == [
        (SnapshotType.PRE_SYNC.value, 80),
        (SnapshotType.POST_SYNC.value, 100),
    ]
    assert snapshots[1].previous_snapshot_id == snapshots[0].id

    changes = await sync_context.change_tracker.get_entity_changes(USER_ID, "101")
    assert (changes[0].before_snapshot_id, changes[0].after_snapshot_id) == (snapshots[0].id, snapshots[1].id)


@pytest.mark.asyncio
async def test_skipped_pair_takes_no_snapshot(service, storefront, session_factory, linked_item):
    storefront.levels[("7001", "1")] = 100

    await service.sync(PlatformName.NETSUITE, PlatformName.SHOPIFY, SyncFilters(full_sync=True))

    async with session_factory() as session:
        assert (await session.execute(select(ProductSnapshot))).scalars().all() == []
