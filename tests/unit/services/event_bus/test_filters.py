# tests/unit/services/event_bus/test_filters.py
import pytest

from syncbridge.core.enums import EntityType, EventPriority, EventSource, EventType
from syncbridge.core.exceptions import ValidationError
from syncbridge.services.event_bus.filters import (
    Between,
    Condition,
    Contains,
    Equals,
    EventFilter,
    FilterOperator,
    GreaterThan,
    In,
    Matches,
    NotEquals,
    build_filter,
)
from syncbridge.services.event_bus.types import EventMetadata, SyncEvent, event_view


@pytest.fixture
def view():
    event = SyncEvent(
        type=EventType.WEBHOOK_RECEIVED,
        source=EventSource.SHOPIFY,
        entity_type=EntityType.ORDER,
        entity_id="5001",
        user_id="user-1",
        payload={"action": "created", "total": 120.5, "tags": ["vip", "wholesale"], "note": "Rush delivery"},
        metadata=EventMetadata(priority=EventPriority.HIGH),
    )
    return event_view(event)


def test_equals_reads_dotted_paths(view):
    assert Equals("payload.action", "created").matches(view)
    assert Equals("metadata.priority", "high").matches(view)
    assert not Equals("payload.action", "updated").matches(view)
    assert NotEquals("source", "netsuite").matches(view)


def test_missing_paths_do_not_match(view):
    assert not Equals("payload.missing.deep", "x").matches(view)
    assert not GreaterThan("payload.missing", 1).matches(view)


def test_contains_works_on_strings_and_lists(view):
    assert Contains("payload.note", "Rush").matches(view)
    assert Contains("payload.tags", "vip").matches(view)
    assert not Contains("payload.total", 1).matches(view)


def test_numeric_comparisons(view):
    assert GreaterThan("payload.total", 100).matches(view)
    assert Between("payload.total", 100, 150).matches(view)
    assert not Between("payload.total", 121, 150).matches(view)


def test_regex_and_membership(view):
    assert Matches("entity_id", r"^50\d+$").matches(view)
    assert In("entity_type", ("order", "customer")).matches(view)


def test_filter_operators(view):
    conditions = [Equals("payload.action", "created"), Equals("source", "netsuite")]

    assert not EventFilter(conditions).matches(view)
    assert EventFilter(conditions, FilterOperator.OR).matches(view)
    assert EventFilter([]).matches(view)


def test_build_filter_from_wire_form(view):
    event_filter = build_filter({
        "operator": "and",
        "conditions": [
            {"field": "payload.action", "operator": "equals", "value": "created"},
            {"field": "payload.total", "operator": "between", "value": [100, 200]},
            {"field": "payload.tags", "operator": "contains", "value": "vip"},
        ],
    })

    assert event_filter.matches(view)


@pytest.mark.parametrize("raw", [
    {"field": "x", "operator": "sounds_like", "value": 1},
    {"field": "x", "operator": "between", "value": [1]},
    {"field": "x", "operator": "in", "value": "abc"},
    {"field": "x", "operator": "regex", "value": "("},
    {"operator": "equals", "value": 1},
])
def test_build_filter_rejects_bad_conditions(raw):
    with pytest.raises(ValidationError):
        build_filter({"conditions": [raw]})


def test_condition_base_cannot_be_used_directly():
    with pytest.raises(TypeError):
        Condition("payload.action")
