"""Structural diff of two JSON-like values.

The walk visits the union of keys of both sides (left keys first, then keys
only present on the right). Within one object, array-index-like keys
(``"0"``, ``"17"``) come first in ascending order, then the remaining keys
in insertion order, the way JavaScript enumerates object keys. Where both
values are containers (dict or list) it recurses; otherwise differing values
produce one entry:

- ``added`` when the key is absent on the left,
- ``removed`` when it is absent on the right,
- ``changed`` otherwise.

Lists are treated as objects keyed by their stringified index, so inserting
an element at the front reports every following index as changed rather
than one insertion. A list and a dict at the same path are compared key by
key the same way.

Primitive equality follows JavaScript strict equality over JSON values:
``1 == 1.0`` but ``True != 1`` and ``None`` only equals ``None``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    CHANGED = "changed"


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()

# Deepest container nesting accepted by the diff service.
MAX_DEPTH = 128

_INDEX_KEY_RE = re.compile(r"0|[1-9][0-9]*")
_MAX_INDEX = 2**32 - 1


@dataclass(frozen=True)
class DiffEntry:
    """One difference found at ``path``."""

    kind: ChangeKind
    path: str
    value: Any = None
    old: Any = None
    new: Any = None

    @classmethod
    def added(cls, path: str, value: Any) -> DiffEntry:
        return cls(ChangeKind.ADDED, path, value=value)

    @classmethod
    def removed(cls, path: str, value: Any) -> DiffEntry:
        return cls(ChangeKind.REMOVED, path, value=value)

    @classmethod
    def changed(cls, path: str, old: Any, new: Any) -> DiffEntry:
        return cls(ChangeKind.CHANGED, path, old=old, new=new)

    def to_dict(self) -> dict[str, Any]:
        if self.kind is ChangeKind.CHANGED:
            return {"type": self.kind.value, "path": self.path, "from": self.old, "to": self.new}
        return {"type": self.kind.value, "path": self.path, "value": self.value}


def _is_container(value: Any) -> bool:
    return isinstance(value, (dict, list))


def _index_key(key: str) -> int | None:
    """Return the numeric value of an array-index-like key, else None."""
    if _INDEX_KEY_RE.fullmatch(key):
        n = int(key)
        if n < _MAX_INDEX:
            return n
    return None


def _object_key_order(keys: list[str]) -> list[str]:
    # Index-like keys ascending, then the rest in insertion order.
    indexed: list[tuple[int, str]] = []
    named: list[str] = []
    for key in keys:
        n = _index_key(key)
        if n is None:
            named.append(key)
        else:
            indexed.append((n, key))
    return [k for _, k in sorted(indexed)] + named


def _as_mapping(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        items = {str(k): v for k, v in value.items()}
        return {k: items[k] for k in _object_key_order(list(items))}
    if isinstance(value, list):
        return {str(i): v for i, v in enumerate(value)}
    return {}


def nesting_depth(value: Any) -> int:
    """Return how many containers deep *value* goes (0 for a scalar)."""
    deepest = 0
    stack = [(value, 1)]
    while stack:
        current, depth = stack.pop()
        if isinstance(current, dict):
            children = current.values()
        elif isinstance(current, list):
            children = current
        else:
            continue
        deepest = max(deepest, depth)
        stack.extend((child, depth + 1) for child in children)
    return deepest


def strict_equal(a: Any, b: Any) -> bool:
    """JavaScript ``===`` for JSON primitives; containers are never equal here."""
    if a is MISSING or b is MISSING:
        return a is b
    if _is_container(a) or _is_container(b):
        return False
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    return type(a) is type(b) and a == b


def generate_diff(old: Any, new: Any, path: str = "") -> list[DiffEntry]:
    """Return the ordered differences between *old* and *new*."""
    left = _as_mapping(old)
    right = _as_mapping(new)
    keys = list(left)
    keys.extend(k for k in right if k not in left)

    changes: list[DiffEntry] = []
    for key in keys:
        full_path = f"{path}.{key}" if path else key
        a = left.get(key, MISSING)
        b = right.get(key, MISSING)

        if _is_container(a) and _is_container(b):
            changes.extend(generate_diff(a, b, full_path))
        elif not strict_equal(a, b):
            if a is MISSING:
                changes.append(DiffEntry.added(full_path, b))
            elif b is MISSING:
                changes.append(DiffEntry.removed(full_path, a))
            else:
                changes.append(DiffEntry.changed(full_path, a, b))
    return changes
