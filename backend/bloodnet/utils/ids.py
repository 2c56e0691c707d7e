from __future__ import annotations

from typing import Any

from bson import ObjectId
from bson.errors import InvalidId

from ..errors import NotFoundError


def parse_object_id(value: Any, label: str = "Resource") -> ObjectId:
    """Coerce a path or body identifier; malformed ids are reported as missing."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError) as exc:
        raise NotFoundError(f"{label} not found") from exc
