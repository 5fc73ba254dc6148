"""
Subscription filters.

Each condition is a small value type that knows how to test one field of the
event view. Field paths are dotted ("payload.action", "metadata.priority").
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Sequence

from syncbridge.core.exceptions import ValidationError
from syncbridge.core.utils import get_path


class FilterOperator(str, Enum):
    AND = "and"
    OR = "or"


@dataclass(frozen=True)
class Condition(ABC):
    field: str

    @abstractmethod
    def test(self, actual: Any) -> bool:
        """True when the field value satisfies this condition."""

    def matches(self, view: Mapping[str, Any]) -> bool:
        return self.test(get_path(view, self.field))


@dataclass(frozen=True)
class Equals(Condition):
    value: Any = None

    def test(self, actual):
        return actual == self.value


@dataclass(frozen=True)
class NotEquals(Condition):
    value: Any = None

    def test(self, actual):
        return actual != self.value


@dataclass(frozen=True)
class Contains(Condition):
    """Substring for strings, membership for lists and dicts."""
    value: Any = None

    def test(self, actual):
        if isinstance(actual, str):
            return str(self.value) in actual
        if isinstance(actual, (list, tuple, set, dict)):
            return self.value in actual
        return False


def _compare(actual, expected, op) -> bool:
    if actual is None or expected is None:
        return False
    try:
        return op(actual, expected)
    except TypeError:
        return False


@dataclass(frozen=True)
class GreaterThan(Condition):
    value: Any = None

    def test(self, actual):
        return _compare(actual, self.value, lambda a, b: a > b)


@dataclass(frozen=True)
class LessThan(Condition):
    value: Any = None

    def test(self, actual):
        return _compare(actual, self.value, lambda a, b: a < b)


@dataclass(frozen=True)
class Between(Condition):
    """Inclusive range."""
    low: Any = None
    high: Any = None

    def test(self, actual):
        return _compare(actual, self.low, lambda a, b: a >= b) and _compare(actual, self.high, lambda a, b: a <= b)


@dataclass(frozen=True)
class Matches(Condition):
    pattern: str = ""

    def test(self, actual):
        if actual is None:
            return False
        return re.search(self.pattern, str(actual)) is not None


@dataclass(frozen=True)
class In(Condition):
    values: tuple = ()

    def test(self, actual):
        return actual in self.values


@dataclass(frozen=True)
class NotIn(Condition):
    values: tuple = ()

    def test(self, actual):
        return actual not in self.values


@dataclass
class EventFilter:
    conditions: List[Condition] = field(default_factory=list)
    operator: FilterOperator = FilterOperator.AND

    def matches(self, view: Mapping[str, Any]) -> bool:
        if not self.conditions:
            return True
        results = (condition.matches(view) for condition in self.conditions)
        if self.operator == FilterOperator.OR:
            return any(results)
        return all(results)


def build_condition(raw: Mapping[str, Any]) -> Condition:
    """
    Build a condition from its wire form ``{"field", "operator", "value"}``.
    ``between`` takes ``value`` as a two-item list.
    """
    try:
        field_path = raw["field"]
        operator = raw["operator"]
    except KeyError as e:
        raise ValidationError(f"Filter condition is missing {e}") from e
    value = raw.get("value")

    if operator == "equals":
        return Equals(field_path, value)
    if operator == "not_equals":
        return NotEquals(field_path, value)
    if operator == "contains":
        return Contains(field_path, value)
    if operator == "greater_than":
        return GreaterThan(field_path, value)
    if operator == "less_than":
        return LessThan(field_path, value)
    if operator == "regex":
        try:
            re.compile(value)
        except (re.error, TypeError) as e:
            raise ValidationError(f"Invalid regex for {field_path}: {e}") from e
        return Matches(field_path, value)
    if operator in ("in", "not_in"):
        if not isinstance(value, Sequence) or isinstance(value, str):
            raise ValidationError(f"'{operator}' needs a list value for {field_path}")
        return (In if operator == "in" else NotIn)(field_path, tuple(value))
    if operator == "between":
        if not isinstance(value, Sequence) or isinstance(value, str) or len(value) != 2:
            raise ValidationError(f"'between' needs [low, high] for {field_path}")
        return Between(field_path, value[0], value[1])
    raise ValidationError(f"Unknown filter operator '{operator}'")


def build_filter(raw: Mapping[str, Any]) -> EventFilter:
    conditions = [build_condition(c) for c in raw.get("conditions", [])]
    return EventFilter(conditions, FilterOperator(raw.get("operator", "and")))

