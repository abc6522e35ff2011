"""Text renderers for diff entries."""

from __future__ import annotations

import json
from collections.abc import Sequence
from enum import Enum
from typing import Any

from mongo_notify.diff.engine import ChangeKind, DiffEntry


class DiffFormat(str, Enum):
    JSON = "json"
    GIT = "git"
    PLAIN = "plain"
    COMPACT = "compact"
    SUMMARY = "summary"

    @classmethod
    def parse(cls, name: str | None) -> DiffFormat:
        """Map a query value to a format; unknown or missing names mean JSON."""
        try:
            return cls((name or "json").lower())
        except ValueError:
            return cls.JSON


def _js_value(value: Any) -> Any:
    """Render integral floats the way JSON.stringify does (``1.0`` -> ``1``)."""
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    if isinstance(value, dict):
        return {k: _js_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_js_value(v) for v in value]
    return value


def _compact_json(value: Any) -> str:
    return json.dumps(_js_value(value), separators=(",", ":"), ensure_ascii=False)


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return _compact_json(value)


def _git_line(entry: DiffEntry) -> str:
    if entry.kind is ChangeKind.ADDED:
        return f"+ {entry.path}: {_compact_json(entry.value)}"
    if entry.kind is ChangeKind.REMOVED:
        return f"- {entry.path}: {_compact_json(entry.value)}"
    return f"~ {entry.path}: {_compact_json(entry.old)} -> {_compact_json(entry.new)}"


def _plain_line(entry: DiffEntry) -> str:
    if entry.kind is ChangeKind.ADDED:
        return f"Added {entry.path} = {_text(entry.value)}"
    if entry.kind is ChangeKind.REMOVED:
        return f"Removed {entry.path} (was {_text(entry.value)})"
    return f"Changed {entry.path} from {_text(entry.old)} to {_text(entry.new)}"


_COMPACT_MARKS = {ChangeKind.ADDED: "+", ChangeKind.REMOVED: "-", ChangeKind.CHANGED: "~"}


def summarize(entries: Sequence[DiffEntry]) -> dict[str, int]:
    stats = {kind.value: 0 for kind in ChangeKind}
    for entry in entries:
        stats[entry.kind.value] += 1
    return stats


def format_diff(entries: Sequence[DiffEntry], style: DiffFormat | str = DiffFormat.JSON) -> str:
    """Render *entries* in the requested style."""
    style = style if isinstance(style, DiffFormat) else DiffFormat.parse(style)

    if style is DiffFormat.GIT:
        return "\n".join(_git_line(e) for e in entries)
    if style is DiffFormat.PLAIN:
        return "\n".join(_plain_line(e) for e in entries)
    if style is DiffFormat.COMPACT:
        return "\n".join(f"{_COMPACT_MARKS[e.kind]}{e.path}" for e in entries)
    if style is DiffFormat.SUMMARY:
        stats = summarize(entries)
        return (
            f"Added: {stats['added']}, Removed: {stats['removed']}, Changed: {stats['changed']}"
        )
    payload = {"diff": [_js_value(e.to_dict()) for e in entries]}
    return json.dumps(payload, indent=2, ensure_ascii=False)
