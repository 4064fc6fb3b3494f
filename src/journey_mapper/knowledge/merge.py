"""Additive merge helpers for repeated-field data.

These never mutate their inputs and tolerate malformed existing values
(legacy JSON text, ``None``, scalars) by treating them as empty.
"""

import json
from typing import Any


def safe_parse(value: Any, default: Any = None) -> Any:
    """Decode JSON text, passing already-decoded values through."""
    if value is None or value == "":
        return default
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return default
    return value


def _as_list(value: Any) -> list:
    parsed = safe_parse(value, [])
    return list(parsed) if isinstance(parsed, list) else []


def _as_items(value: Any) -> list:
    if value is None:
        return []
    return list(value) if isinstance(value, list) else [value]


def merge_array(existing: Any, incoming: Any, dedup_key: str | None = None) -> list:
    """Merge ``incoming`` items into ``existing``.

    Without ``dedup_key`` the result is ``existing + incoming``. With a key,
    items sharing a key value are replaced in place (last write wins) and new
    keys are appended in arrival order. Items lacking the key keep their
    position if they were already there and are appended otherwise, unless an
    equal item is already present.
    """
    result = _as_list(existing)
    items = _as_items(incoming)

    if dedup_key is None:
        return result + items

    positions: dict[Any, int] = {}
    for index, item in enumerate(result):
        if isinstance(item, dict) and item.get(dedup_key) is not None:
            positions[item[dedup_key]] = index

    for item in items:
        key = item.get(dedup_key) if isinstance(item, dict) else None
        if key is None:
            if item not in result:
                result.append(item)
        elif key in positions:
            result[positions[key]] = item
        else:
            positions[key] = len(result)
            result.append(item)

    return result


def add_unique(existing: Any, value: Any) -> list:
    """Append ``value`` unless it is already present."""
    result = _as_list(existing)
    if value not in result:
        result.append(value)
    return result


def union_values(existing: Any, values: Any) -> list:
    """``add_unique`` every entry of ``values`` in order."""
    result = _as_list(existing)
    for value in _as_items(values):
        if value not in result:
            result.append(value)
    return result
