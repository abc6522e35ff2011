"""JSON encoding for change events that carry BSON types."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from bson import ObjectId, json_util


def _default(obj: Any) -> Any:
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=timezone.utc)
        return obj.isoformat().replace("+00:00", "Z")
    # Timestamp, Decimal128, Binary, Regex, ... -> relaxed Extended JSON
    return json_util.default(obj, json_options=json_util.RELAXED_JSON_OPTIONS)


def dumps(message: Any) -> str:
    """Serialize *message* to compact JSON text, encoding BSON values."""
    return json.dumps(message, default=_default, separators=(",", ":"), ensure_ascii=False)
