# tests/unit/services/test_snapshot_service.py
from datetime import timedelta

import pytest
from sqlalchemy import update

from syncbridge.core.enums import PlatformName, RestorePointStatus, SnapshotType
from syncbridge.core.exceptions import SnapshotIntegrityError, SnapshotNotFoundError, ValidationError
from syncbridge.core.utils import compute_checksum, utcnow
from syncbridge.models.product import Product
from syncbridge.models.snapshot import ProductSnapshot, RestorePoint
from syncbridge.services.snapshot_service import RestorePointService, SnapshotService

USER = "user-1"


@pytest.fixture
def snapshots(session_factory):
    return SnapshotService(session_factory)


@pytest.fixture
def restore_points(session_factory, snapshots):
    return RestorePointService(session_factory, snapshots)


async def add_product(session_factory, external_id="101", platform=PlatformName.SHOPIFY, price=100.0, user_id=USER):
    async with session_factory() as session:
        product = Product(
            user_id=user_id,
            platform=platform.value,
            platform_product_id=external_id,
            sku=f"SKU-{external_id}",
            name=f"Product {external_id}",
            price=price,
            inventory_quantity=5,
            is_active=True,
            attributes={},
        )
        session.add(product)
        await session.commit()
        return product


@pytest.mark.asyncio
async def test_snapshot_versions_chain(session_factory, snapshots):
    await add_product(session_factory)

    first = await snapshots.snapshot(USER, "101", PlatformName.SHOPIFY, SnapshotType.PRE_SYNC)
    second = await snapshots.snapshot(USER, "101", PlatformName.SHOPIFY, SnapshotType.POST_SYNC)

    assert first.version == 1
    assert first.previous_snapshot_id is None
    assert second.version == 2
    assert second.previous_snapshot_id == first.id
    assert first.data["price"] == 100.0
    assert first.checksum == compute_checksum(first.data)


@pytest.mark.asyncio
async def test_snapshot_of_missing_entity_raises(snapshots):
    with pytest.raises(ValidationError):
        await snapshots.snapshot(USER, "404", PlatformName.SHOPIFY)


@pytest.mark.asyncio
async def test_verify_detects_tampering(session_factory, snapshots):
    await add_product(session_factory)
    snapshot = await snapshots.snapshot(USER, "101", PlatformName.SHOPIFY)
    assert SnapshotService.verify(snapshot) is True

    async with session_factory() as session:
        await session.execute(
            update(ProductSnapshot)
            .where(ProductSnapshot.id == snapshot.id)
            .values(data={**snapshot.data, "price": 1.0})
        )
        await session.commit()

    tampered = await snapshots.get(snapshot.id)
    assert SnapshotService.verify(tampered) is False
    with pytest.raises(SnapshotIntegrityError):
        SnapshotService.assert_valid(tampered)


@pytest.mark.asyncio
async def test_get_unknown_snapshot_raises(snapshots):
    with pytest.raises(SnapshotNotFoundError):
        await snapshots.get(12345)


@pytest.mark.asyncio
async def test_snapshot_data_captures_payload(snapshots):
    snapshot = await snapshots.snapshot_data(USER, "201", PlatformName.NETSUITE, {"itemId": "X", "basePrice": 5})

    assert snapshot.version == 1
    assert snapshot.data == {"itemId": "X", "basePrice": 5}


@pytest.mark.asyncio
async def test_snapshot_batch_skips_unknown_entities(session_factory, snapshots):
    await add_product(session_factory, "101")
    await add_product(session_factory, "102")

    result = await snapshots.snapshot_batch(
        USER, [("101", PlatformName.SHOPIFY), ("999", PlatformName.SHOPIFY), ("102", PlatformName.SHOPIFY)]
    )

    assert [s.entity_id for s in result] == ["101", "102"]


@pytest.mark.asyncio
async def test_get_at_time_returns_latest_before_timestamp(session_factory, snapshots):
    await add_product(session_factory)
    first = await snapshots.snapshot(USER, "101", PlatformName.SHOPIFY)

    assert await snapshots.get_at_time(USER, "101", PlatformName.SHOPIFY, first.created_at - timedelta(seconds=1)) is None

    found = await snapshots.get_at_time(USER, "101", PlatformName.SHOPIFY, utcnow() + timedelta(seconds=1))
    assert found.id == first.id


@pytest.mark.asyncio
async def test_restore_point_links_one_snapshot_per_entity(session_factory, restore_points, snapshots):
    await add_product(session_factory, "101", PlatformName.SHOPIFY)
    await add_product(session_factory, "201", PlatformName.NETSUITE)
    await add_product(session_factory, "301", PlatformName.SHOPIFY, user_id="user-2")

    point = await restore_points.create_restore_point(USER, "before import", "nightly import")

    assert point.total_snapshots == 2
    linked = await snapshots.list_for_restore_point(point.id)
    assert sorted(s.entity_id for s in linked) == ["101", "201"]

    listed = await restore_points.list_restore_points(USER)
    assert [p.id for p in listed] == [point.id]


@pytest.mark.asyncio
async def test_restore_point_can_be_limited_to_platforms(session_factory, restore_points):
    await add_product(session_factory, "101", PlatformName.SHOPIFY)
    await add_product(session_factory, "201", PlatformName.NETSUITE)

    point = await restore_points.create_restore_point(USER, "shopify only", platforms=[PlatformName.SHOPIFY])

    assert point.total_snapshots == 1


@pytest.mark.asyncio
async def test_expire_restore_points(session_factory, restore_points):
    old = await restore_points.create_restore_point(USER, "old")
    fresh = await restore_points.create_restore_point(USER, "fresh")

    async with session_factory() as session:
        await session.execute(
            update(RestorePoint)
            .where(RestorePoint.id == old.id)
            .values(created_at=utcnow() - timedelta(days=45))
        )
        await session.commit()

    expired = await restore_points.expire_restore_points(30)

    assert expired == 1
    assert (await restore_points.get_restore_point(old.id)).status == RestorePointStatus.EXPIRED.value
    assert (await restore_points.get_restore_point(fresh.id)).status == RestorePointStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_recent_restore_points_window(session_factory, restore_points):
    old = await restore_points.create_restore_point(USER, "old")
    fresh = await restore_points.create_restore_point(USER, "fresh")

    async with session_factory() as session:
        await session.execute(
            update(RestorePoint)
            .where(RestorePoint.id == old.id)
            .values(created_at=utcnow() - timedelta(days=20))
        )
        await session.commit()

    recent = await restore_points.get_recent_restore_points(USER, days=14)

    assert [p.id for p in recent] == [fresh.id]
