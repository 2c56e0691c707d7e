from __future__ import annotations

from typing import Any, Dict, Iterable

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..errors import NotFoundError
from ..utils.ids import parse_object_id

USER_PROJECTION = {"password": 0}


async def fetch_users(db: AsyncIOMotorDatabase, ids: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
    """Load the user documents behind a set of references, keyed by string id."""
    object_ids = {ObjectId(str(value)) for value in ids if value}
    if not object_ids:
        return {}
    cursor = db.users.find({"_id": {"$in": list(object_ids)}}, USER_PROJECTION)
    return {str(user["_id"]): user async for user in cursor}


async def get_active_hospital(db: AsyncIOMotorDatabase, hospital_id: Any) -> Dict[str, Any]:
    object_id = parse_object_id(hospital_id, "Hospital")
    hospital = await db.users.find_one(
        {"_id": object_id, "role": "hospital", "is_active": True},
        USER_PROJECTION,
    )
    if not hospital:
        raise NotFoundError("Hospital not found")
    return hospital
