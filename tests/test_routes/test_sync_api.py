# tests/test_routes/test_sync_api.py
import pytest

from syncbridge.core.enums import SyncRunStatus
from syncbridge.models.sync_log import SyncLog

from tests.conftest import USER_ID

PRODUCTS_ONLY = {
    "direction": "shopify_to_netsuite",
    "dataTypes": {"products": True, "inventory": False, "orders": False},
}


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_trigger_sync_returns_run_outcome(client, storefront, erp, sample_shopify_product):
    storefront.add_product(sample_shopify_product)

    response = await client.post("/api/sync", json=PRODUCTS_ONLY)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["itemsProcessed"] == 1
    assert body["itemsSucceeded"] == 1
    assert isinstance(body["syncLogId"], int)
    assert len(erp.items) == 1


@pytest.mark.asyncio
async def test_sync_log_can_be_read_back(client):
    created = await client.post("/api/sync", json=PRODUCTS_ONLY)
    sync_log_id = created.json()["syncLogId"]

    response = await client.get(f"/api/sync/{sync_log_id}")

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == sync_log_id
    assert body["userId"] == USER_ID
    assert body["direction"] == "shopify_to_netsuite"
    assert body["dataTypes"] == ["products"]
    assert body["completedAt"] is not None


@pytest.mark.asyncio
async def test_sync_log_of_other_user_is_not_found(client):
    created = await client.post("/api/sync", json=PRODUCTS_ONLY)
    sync_log_id = created.json()["syncLogId"]

    response = await client.get(f"/api/sync/{sync_log_id}", headers={"X-User-Id": "someone-else"})

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_missing_user_header_is_rejected(client):
    response = await client.post("/api/sync", json=PRODUCTS_ONLY, headers={"X-User-Id": ""})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_running_sync_answers_conflict(client, session_factory):
    async with session_factory() as session:
        running = SyncLog(user_id=USER_ID, direction="bidirectional", status=SyncRunStatus.RUNNING.value)
        session.add(running)
        await session.commit()

    response = await client.post("/api/sync", json=PRODUCTS_ONLY)

    assert response.status_code == 409
    assert response.json()["detail"]["syncLogId"] == running.id


@pytest.mark.asyncio
async def test_invalid_direction_is_rejected(client):
    response = await client.post("/api/sync", json={"direction": "sideways"})

    assert response.status_code == 422
