"""Defensive serialization of arbitrary runtime values.

Turns any value (state dumps, props, hook chains) into deterministic JSON
text. Cycles and shared references are replaced with
[Circular-><first path>] markers; exotic values become bracketed
descriptions. Size is not enforced here; callers run the result through
converge_string_budget().

Usage:
    >>> state = {"name": "probe"}
    >>> state["self"] = state
    >>> print(safe_stringify(state))
    {
      "name": "probe",
      "self": "[Circular->$]"
    }
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import enum
import inspect
import json
import logging
import math
import re
from collections.abc import Mapping, Set
from typing import Any

logger = logging.getLogger(__name__)

__all__ = ["safe_stringify", "to_serializable"]

# Largest integer a JSON consumer can hold without precision loss
MAX_SAFE_INTEGER = 2**53 - 1

# Nesting deeper than this is summarized instead of walked; each level costs
# several stack frames, so this stays well under the recursion limit
MAX_NESTING = 100

Serializable = str | int | float | bool | None | list["Serializable"] | dict[str, "Serializable"]


def _type_name(value: Any) -> str:
    return type(value).__name__


def _describe(value: Any) -> str:
    """repr() that cannot raise."""
    try:
        return repr(value)
    except Exception:  # noqa: BLE001 - arbitrary __repr__
        return f"<{_type_name(value)}>"


def _scalar(value: Any) -> tuple[bool, Serializable]:
    """Convert non-container values; returns (handled, result)."""
    if value is None or isinstance(value, (str, bool)):
        return True, value
    if isinstance(value, enum.Enum):
        return True, f"[Enum:{type(value).__name__}.{value.name}]"
    if isinstance(value, int):
        if -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER:
            return True, int(value)
        return True, f"[BigInt:{value}]"
    if isinstance(value, float):
        if math.isfinite(value):
            return True, value
        if math.isnan(value):
            return True, "[NonFiniteNumber:NaN]"
        return True, "[NonFiniteNumber:Infinity]" if value > 0 else "[NonFiniteNumber:-Infinity]"
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return True, f"[Date:{value.isoformat()}]"
    if isinstance(value, re.Pattern):
        return True, f"[RegExp:/{value.pattern}/]"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return True, f"[Bytes:len={len(value)}]"
    if inspect.ismodule(value):
        return True, f"[Module:{value.__name__}]"
    if inspect.isclass(value):
        return True, f"[Class:{value.__name__}]"
    if callable(value):
        name = getattr(value, "__name__", None)
        return True, f"[Function:{name if isinstance(name, str) and name else 'anonymous'}]"
    return False, None


def _fields_of(value: Any) -> Mapping[Any, Any] | None:
    """Field mapping for dataclasses, pydantic models and plain objects."""
    if dataclasses.is_dataclass(value):
        return {field.name: getattr(value, field.name, None) for field in dataclasses.fields(value)}
    model_dump = getattr(type(value), "model_dump", None)
    if callable(model_dump):
        dumped = value.model_dump()
        return dumped if isinstance(dumped, Mapping) else None
    attrs = getattr(value, "__dict__", None)
    if isinstance(attrs, Mapping):
        return attrs
    slots = getattr(type(value), "__slots__", None)
    if isinstance(slots, (tuple, list)):
        return {name: getattr(value, name) for name in slots if hasattr(value, name)}
    return None


class _Walker:
    """Single-use walker holding the identity-keyed visited table."""

    def __init__(self) -> None:
        # id -> (object, first path); the object reference keeps the id stable
        self._seen: dict[int, tuple[Any, str]] = {}

    def walk(self, value: Any, path: str, depth: int) -> Serializable:
        try:
            handled, result = _scalar(value)
            if handled:
                return result
        except Exception:  # noqa: BLE001 - exotic __eq__/__index__/isoformat
            return f"[Unserializable:{_type_name(value)}]"

        # Empty tuples and frozensets are interpreter-wide singletons
        if type(value) in (tuple, frozenset) and not value:
            return []

        seen = self._seen.get(id(value))
        if seen is not None:
            return f"[Circular->{seen[1]}]"
        if depth >= MAX_NESTING:
            return f"[MaxNesting:{_type_name(value)}]"
        self._seen[id(value)] = (value, path)

        try:
            return self._walk_composite(value, path, depth)
        except Exception as e:  # noqa: BLE001 - user containers may raise on iteration
            logger.debug("Cannot serialize %s at %s: %s", _type_name(value), path, e)
            return f"[Unserializable:{_type_name(value)}]"

    def _walk_composite(self, value: Any, path: str, depth: int) -> Serializable:
        if isinstance(value, Mapping):
            return self._walk_mapping(value, path, depth)
        if isinstance(value, (list, tuple)):
            return [
                self.walk(item, f"{path}[{index}]", depth + 1) for index, item in enumerate(value)
            ]
        if isinstance(value, Set):
            items = [
                self.walk(item, f"{path}.set[{index}]", depth + 1)
                for index, item in enumerate(value)
            ]
            # Set iteration order is not stable across runs
            return sorted(
                items, key=lambda item: json.dumps(item, sort_keys=True, ensure_ascii=False)
            )
        fields = _fields_of(value)
        if fields is not None:
            return self._walk_mapping(fields, path, depth)
        return f"[Unserializable:{_type_name(value)}]"

    def _walk_mapping(self, value: Mapping[Any, Any], path: str, depth: int) -> Serializable:
        entries: list[tuple[str, Any, str]] = []
        for index, (key, item) in enumerate(value.items()):
            if isinstance(key, str):
                entries.append((key, item, f"{path}.{key}"))
            else:
                entries.append((f"[Key:{_describe(key)}]", item, f"{path}.map[{index}]"))
        entries.sort(key=lambda entry: entry[0])
        return {key: self.walk(item, item_path, depth + 1) for key, item, item_path in entries}


def to_serializable(value: Any) -> Serializable:
    """Convert an arbitrary value into JSON-compatible data. Never raises."""
    return _Walker().walk(value, "$", 0)


def safe_stringify(value: Any) -> str:
    """Serialize an arbitrary value as deterministic, indented JSON.

    Args:
        value: Any runtime value, possibly cyclic.

    Returns:
        JSON text with sorted keys; never raises.

    """
    return json.dumps(to_serializable(value), indent=2, sort_keys=True, ensure_ascii=False)
