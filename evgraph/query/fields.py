"""
Field access and filter matching on graph nodes.

Paths are attribute names (`status`, `deadline`) or dotted payload paths
(`payload.severity`). Enum values compare by their string value and
ISO-8601 strings compare against datetimes as datetimes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from ..graph.nodes import Node
from ..util import parse_timestamp

_MISSING = object()


def field_value(node: Node, path: str) -> Any:
    if path.startswith("payload."):
        value: Any = getattr(node, "payload", None)
        for part in path.split(".")[1:]:
            if not isinstance(value, dict) or part not in value:
                return None
            value = value[part]
        return value
    if path.startswith("metadata."):
        value = getattr(node, "metadata", None)
        for part in path.split(".")[1:]:
            if not isinstance(value, dict) or part not in value:
                return None
            value = value[part]
        return value
    value = getattr(node, path, _MISSING)
    if value is _MISSING:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, tuple):
        return list(value)
    return value


def as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return parse_timestamp(value)
    if isinstance(value, str) and value:
        try:
            return parse_timestamp(value)
        except ValueError:
            return None
    return None


def _comparable(actual: Any, expected: Any) -> tuple[Any, Any]:
    if isinstance(actual, datetime) or isinstance(expected, datetime):
        return as_datetime(actual), as_datetime(expected)
    if isinstance(expected, Enum):
        expected = expected.value
    return actual, expected


def equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, list) and not isinstance(expected, list):
        return expected in actual
    a, e = _comparable(actual, expected)
    return a == e


def greater_than(actual: Any, expected: Any) -> bool:
    a, e = _comparable(actual, expected)
    if a is None or e is None:
        return False
    try:
        return a > e
    except TypeError:
        return False


def less_than(actual: Any, expected: Any) -> bool:
    a, e = _comparable(actual, expected)
    if a is None or e is None:
        return False
    try:
        return a < e
    except TypeError:
        return False


def contains(actual: Any, expected: Any) -> bool:
    if actual is None:
        return False
    if isinstance(actual, (list, dict)):
        return expected in actual
    return str(expected) in str(actual)


def _match_condition(actual: Any, condition: dict[str, Any]) -> bool:
    for op, expected in condition.items():
        if op == "equals" and not equals(actual, expected):
            return False
        if op == "not" and equals(actual, expected):
            return False
        if op == "contains" and not contains(actual, expected):
            return False
        if op == "has" and not (isinstance(actual, list) and expected in actual):
            return False
        if op == "in" and not any(equals(actual, v) for v in (expected or [])):
            return False
        if op == "exists" and (actual is not None) != bool(expected):
            return False
        if op == "gt" and not greater_than(actual, expected):
            return False
        if op == "lt" and not less_than(actual, expected):
            return False
        if op == "gte" and not (greater_than(actual, expected) or equals(actual, expected)):
            return False
        if op == "lte" and not (less_than(actual, expected) or equals(actual, expected)):
            return False
    return True


def matches_filters(node: Node, filters: dict[str, Any]) -> bool:
    """
    Match a node against a filter mapping.

    A scalar value is an equality test (membership for list fields); a
    mapping holds operators: equals, not, contains, has, in, exists,
    gt, lt, gte, lte.
    """
    for path, condition in filters.items():
        actual = field_value(node, path)
        if isinstance(condition, dict):
            if not _match_condition(actual, condition):
                return False
        elif not equals(actual, condition):
            return False
    return True
