"""Structural JSON diff and its text renderers."""

from mongo_notify.diff.engine import ChangeKind, DiffEntry, generate_diff
from mongo_notify.diff.formatting import DiffFormat, format_diff

__all__ = ["ChangeKind", "DiffEntry", "DiffFormat", "format_diff", "generate_diff"]
