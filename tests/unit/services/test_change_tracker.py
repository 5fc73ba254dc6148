# tests/unit/services/test_change_tracker.py
import pytest

from syncbridge.core.enums import ChangeOperation, ChangeSource, EntityType, PlatformName
from syncbridge.services.change_tracker import ChangeTracker, FieldChange, calculate_diff

USER = "user-1"


@pytest.fixture
def tracker(session_factory):
    return ChangeTracker(session_factory)


def test_calculate_diff_scalars():
    assert calculate_diff(1, 2) == {"type": "simple", "changed": True}
    assert calculate_diff("a", "a") == {"type": "simple", "changed": False}


def test_calculate_diff_mappings_is_keywise_and_shallow():
    old = {"price": 10, "name": "Strat", "tags": ["a"]}
    new = {"price": 12, "name": "Strat", "tags": ["a", "b"], "sku": "S-1"}

    diff = calculate_diff(old, new)

    assert diff == {
        "price": {"old": 10, "new": 12},
        "tags": {"old": ["a"], "new": ["a", "b"]},
        "sku": {"old": None, "new": "S-1"},
    }


def test_calculate_diff_from_nothing():
    assert calculate_diff(None, {"price": 5}) == {"price": {"old": None, "new": 5}}


def test_calculate_diff_keeps_json_types_apart():
    diff = calculate_diff({"active": 1, "price": 10, "qty": 3}, {"active": True, "price": 10.0, "qty": 3})

    assert diff == {
        "active": {"old": 1, "new": True},
        "price": {"old": 10, "new": 10.0},
    }
    assert calculate_diff(0, False) == {"type": "simple", "changed": True}


@pytest.mark.asyncio
async def test_log_change_persists_entry_with_diff(tracker):
    entry = await tracker.log_change(
        USER,
        EntityType.PRODUCT,
        "201",
        PlatformName.NETSUITE,
        ChangeOperation.UPDATE,
        field_name="price",
        old_value=100.0,
        new_value=120.0,
        triggered_by="shopify:101",
    )

    assert entry.id is not None
    assert entry.change_source == ChangeSource.SYNC.value
    assert entry.value_diff == {"type": "simple", "changed": True}

    history = await tracker.get_entity_changes(USER, "201")
    assert [e.field_name for e in history] == ["price"]


@pytest.mark.asyncio
async def test_entity_changes_are_newest_first(tracker):
    for price in (1.0, 2.0, 3.0):
        await tracker.log_change(
            USER, EntityType.PRODUCT, "201", PlatformName.NETSUITE, ChangeOperation.UPDATE,
            field_name="price", new_value=price,
        )

    history = await tracker.get_entity_changes(USER, "201")

    assert [e.new_value for e in history] == [3.0, 2.0, 1.0]


@pytest.mark.asyncio
async def test_log_batch_writes_all_changes(tracker):
    changes = [
        FieldChange(USER, EntityType.PRODUCT, "201", PlatformName.NETSUITE, ChangeOperation.UPDATE, "name", "Old", "New"),
        FieldChange(USER, EntityType.PRODUCT, "201", PlatformName.NETSUITE, ChangeOperation.UPDATE, "price", 1, 2),
    ]

    entries = await tracker.log_batch(changes, ChangeSource.MANUAL)

    assert len(entries) == 2
    assert all(e.change_source == "manual" for e in entries)
    assert await tracker.log_batch([]) == []


@pytest.mark.asyncio
async def test_entity_changes_filter_by_platform(tracker):
    await tracker.log_change(USER, EntityType.PRODUCT, "X1", PlatformName.NETSUITE, ChangeOperation.CREATE)
    await tracker.log_change(USER, EntityType.PRODUCT, "X1", PlatformName.SHOPIFY, ChangeOperation.CREATE)

    history = await tracker.get_entity_changes(USER, "X1", platform=PlatformName.SHOPIFY)

    assert [e.platform for e in history] == ["shopify"]
    assert await tracker.get_entity_changes("user-2", "X1") == []
