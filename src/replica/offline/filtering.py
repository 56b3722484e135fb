"""
Evaluation of filter, sort, paging and projection expressions over items.

Filters use the backend's document syntax::

    {"Title": "Milk", "Price": {"$gte": 3}, "$or": [{"Done": True}, {"Tags": {"$in": ["x"]}}]}

Only the operators in ``SUPPORTED_OPERATORS`` can be evaluated locally; a
query using anything else has to go to the server.
"""

from __future__ import annotations

import re
from typing import Any

from replica.constants import ID_FIELD
from replica.schema.item import Item, parse_timestamp

SUPPORTED_OPERATORS = frozenset({
    "$eq", "$ne", "$gt", "$gte", "$lt", "$lte",
    "$in", "$nin", "$regex", "$options", "$exists",
    "$and", "$or", "$not",
})

_MISSING = object()


def unsupported_operators(filter_expr: Any) -> list[str]:
    """Operators in ``filter_expr`` that cannot be evaluated offline."""
    found: list[str] = []

    def walk(node: Any) -> None:
        if isinstance(node, dict):
            for key, value in node.items():
                if isinstance(key, str) and key.startswith("$") and key not in SUPPORTED_OPERATORS:
                    found.append(key)
                walk(value)
        elif isinstance(node, list):
            for child in node:
                walk(child)

    walk(filter_expr)
    return found


def get_path(item: Item, path: str) -> Any:
    """Resolve a dotted field path. Returns ``_MISSING`` when absent."""
    current: Any = item
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _normalize(value: Any) -> Any:
    parsed = parse_timestamp(value)
    return parsed if parsed is not None else value


def _equals(actual: Any, expected: Any) -> bool:
    if actual is _MISSING:
        return expected is None
    if isinstance(actual, list) and not isinstance(expected, list):
        return any(_equals(element, expected) for element in actual)
    return _normalize(actual) == _normalize(expected)


def _compare(actual: Any, expected: Any, op: str) -> bool:
    if actual is _MISSING or actual is None or expected is None:
        return False
    left, right = _normalize(actual), _normalize(expected)
    try:
        if op == "$gt":
            return left > right
        if op == "$gte":
            return left >= right
        if op == "$lt":
            return left < right
        return left <= right
    except TypeError:
        return False


def _matches_condition(actual: Any, condition: Any) -> bool:
    is_operator_dict = isinstance(condition, dict) and condition and all(
        isinstance(k, str) and k.startswith("$") for k in condition
    )
    if not is_operator_dict:
        return _equals(actual, condition)

    for op, operand in condition.items():
        if op == "$eq":
            ok = _equals(actual, operand)
        elif op == "$ne":
            ok = not _equals(actual, operand)
        elif op in ("$gt", "$gte", "$lt", "$lte"):
            ok = _compare(actual, operand, op)
        elif op == "$in":
            ok = any(_equals(actual, candidate) for candidate in operand)
        elif op == "$nin":
            ok = not any(_equals(actual, candidate) for candidate in operand)
        elif op == "$exists":
            ok = (actual is not _MISSING) == bool(operand)
        elif op == "$regex":
            flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
            ok = isinstance(actual, str) and re.search(operand, actual, flags) is not None
        elif op == "$options":
            ok = True
        elif op == "$not":
            ok = not _matches_condition(actual, operand)
        else:
            raise ValueError(f"Unsupported filter operator {op}")
        if not ok:
            return False
    return True


def matches_filter(item: Item, filter_expr: dict[str, Any] | None) -> bool:
    """Check if ``item`` satisfies every clause of ``filter_expr``."""
    if not filter_expr:
        return True

    for key, condition in filter_expr.items():
        if key == "$and":
            if not all(matches_filter(item, sub) for sub in condition):
                return False
        elif key == "$or":
            if not any(matches_filter(item, sub) for sub in condition):
                return False
        elif key == "$not":
            if matches_filter(item, condition):
                return False
        elif not _matches_condition(get_path(item, key), condition):
            return False
    return True


def sort_items(items: list[Item], sort: dict[str, int] | None) -> list[Item]:
    """Stable multi-key sort. ``{"Price": -1, "Title": 1}``."""
    if not sort:
        return items

    result = list(items)
    for field_name, direction in reversed(list(sort.items())):
        def sort_key(item: Item, name: str = field_name) -> tuple[int, Any]:
            value = get_path(item, name)
            if value is _MISSING or value is None:
                return (0, 0)
            return (1, _normalize(value))

        result.sort(key=sort_key, reverse=int(direction) < 0)
    return result


def project(item: Item, select: dict[str, int] | None) -> Item:
    """Apply a field projection (inclusive ``{"a": 1}`` or exclusive ``{"a": 0}``)."""
    if not select:
        return item

    includes = [name for name, flag in select.items() if flag]
    if includes:
        projected = {name: item[name] for name in includes if name in item}
        if select.get(ID_FIELD, 1) and ID_FIELD in item:
            projected[ID_FIELD] = item[ID_FIELD]
        return projected

    return {name: value for name, value in item.items() if name not in select}


def apply_query(
    items: list[Item],
    filter_expr: dict[str, Any] | None = None,
    sort: dict[str, int] | None = None,
    skip: int | None = None,
    take: int | None = None,
    select: dict[str, int] | None = None,
) -> list[Item]:
    """Filter, sort, page and project ``items`` in that order."""
    result = [item for item in items if matches_filter(item, filter_expr)]
    result = sort_items(result, sort)
    if skip:
        result = result[int(skip):]
    if take is not None:
        result = result[: int(take)]
    return [project(item, select) for item in result]
