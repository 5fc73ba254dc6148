# tests/test_routes/test_rollback_api.py
import pytest

from syncbridge.models.product import Product

from tests.conftest import USER_ID


@pytest.fixture
async def mirrored_product(session_factory):
    async with session_factory() as session:
        session.add(Product(
            user_id=USER_ID,
            platform="shopify",
            platform_product_id="101",
            sku="TG-123",
            name="Test Guitar",
            price=999.99,
            inventory_quantity=3,
            is_active=True,
            attributes={},
        ))
        await session.commit()


@pytest.mark.asyncio
async def test_create_and_list_restore_points(client, mirrored_product):
    response = await client.post("/api/restore-points", json={"name": "before import", "description": "nightly"})

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "before import"
    assert body["status"] == "active"
    assert body["total_snapshots"] == 1

    listed = await client.get("/api/restore-points")
    assert [rp["id"] for rp in listed.json()] == [body["id"]]


@pytest.mark.asyncio
async def test_dry_run_rollback(client, mirrored_product):
    point = (await client.post("/api/restore-points", json={"name": "baseline"})).json()

    response = await client.post("/api/rollback", json={"restorePointId": point["id"], "dryRun": True})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["dry_run"] is True
    assert body["items_restored"] == 1


@pytest.mark.asyncio
async def test_rollback_needs_exactly_one_target(client):
    assert (await client.post("/api/rollback", json={})).status_code == 422
    assert (await client.post("/api/rollback", json={
        "restorePointId": 1, "targetTimestamp": "2026-01-01T00:00:00Z",
    })).status_code == 422


@pytest.mark.asyncio
async def test_rollback_to_unknown_restore_point(client):
    response = await client.post("/api/rollback", json={"restorePointId": 999})

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_validate_rollback(client, mirrored_product):
    point = (await client.post("/api/restore-points", json={"name": "baseline"})).json()

    response = await client.post("/api/rollback/validate", json={"restorePointId": point["id"]})

    assert response.status_code == 200
    assert response.json()["valid"] is True
    assert response.json()["snapshot_count"] == 1
