"""Blood inventory ledger.

Stock is tracked per hospital, blood group and batch. Expiry and low-stock
status are derived when items are read and never written back.
"""
from __future__ import annotations

import re
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from ..database import settings
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..models.enums import BLOOD_GROUPS, BloodGroup, InventorySource
from ..models.inventory import InventoryCreate, InventoryItem, InventoryUpdate
from ..models.user import Account
from ..schemas.inventory import blood_unit_document
from ..schemas.user import hospital_summary
from ..utils.dates import to_naive_utc, utcnow
from ..utils.ids import parse_object_id
from .lookups import fetch_users, get_active_hospital


def contains_filter(value: str) -> Dict[str, str]:
    """Case-insensitive substring match."""
    return {"$regex": re.escape(value.strip()), "$options": "i"}


def scope_hospital(actor: Account, hospital_id: Optional[str] = None) -> Optional[ObjectId]:
    """Hospitals always see their own stock; admins pick one or see the whole network."""
    if actor.role == "admin":
        return parse_object_id(hospital_id, "Hospital") if hospital_id else None
    return ObjectId(actor.id)


def _check_owner(actor: Account, item: InventoryItem, action: str) -> None:
    if actor.role != "admin" and item.hospital_id != actor.id:
        raise AuthorizationError(f"Not authorized to {action} this inventory")


async def owning_hospital(db: AsyncIOMotorDatabase, actor: Account, hospital_id: Optional[str]) -> ObjectId:
    if actor.role == "admin" and hospital_id:
        hospital = await get_active_hospital(db, hospital_id)
        return hospital["_id"]
    return ObjectId(actor.id)


async def insert_stock(
    db: AsyncIOMotorDatabase,
    hospital_id: ObjectId,
    blood_group: BloodGroup,
    quantity: int,
    expiry_date: datetime,
    batch_number: Optional[str] = None,
    source: InventorySource = InventorySource.DONATION,
    notes: Optional[str] = None,
    collection_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> InventoryItem:
    now = now or utcnow()
    document: Dict[str, Any] = {
        "hospital_id": hospital_id,
        "blood_group": BloodGroup(blood_group).value,
        "quantity": quantity,
        "unit": "units",
        "expiry_date": expiry_date,
        "collection_date": collection_date or now,
        "batch_number": batch_number,
        "source": InventorySource(source).value,
        "notes": notes,
        "is_active": True,
        "created_at": now,
        "updated_at": now,
    }
    result = await db.inventory.insert_one(document)
    document["_id"] = result.inserted_id
    return InventoryItem(**document)


async def add_stock(
    db: AsyncIOMotorDatabase,
    actor: Account,
    payload: InventoryCreate,
    now: Optional[datetime] = None,
) -> Tuple[InventoryItem, bool]:
    """Add units to the ledger, merging into an existing batch when one matches.

    Returns the resulting item and whether a new item was created.
    """
    now = now or utcnow()
    if payload.quantity < 1:
        raise ValidationError("Quantity must be at least 1 unit")
    expiry_date = to_naive_utc(payload.expiry_date)
    if expiry_date <= now:
        raise ValidationError("Expiry date must be in the future")

    hospital_id = await owning_hospital(db, actor, payload.hospital_id)

    if payload.batch_number:
        merged = await db.inventory.find_one_and_update(
            {
                "hospital_id": hospital_id,
                "blood_group": payload.blood_group.value,
                "batch_number": payload.batch_number,
                "is_active": True,
            },
            {
                "$inc": {"quantity": payload.quantity},
                "$set": {"expiry_date": expiry_date, "updated_at": now},
            },
            return_document=ReturnDocument.AFTER,
        )
        if merged:
            logger.info(
                "Merged {} unit(s) of {} into batch {} at hospital {}",
                payload.quantity,
                payload.blood_group.value,
                payload.batch_number,
                hospital_id,
            )
            return InventoryItem(**merged), False

    item = await insert_stock(
        db,
        hospital_id,
        payload.blood_group,
        payload.quantity,
        expiry_date,
        batch_number=payload.batch_number,
        source=payload.source,
        notes=payload.notes,
        collection_date=to_naive_utc(payload.collection_date) if payload.collection_date else None,
        now=now,
    )
    logger.info("Added {} unit(s) of {} at hospital {}", item.quantity, item.blood_group.value, hospital_id)
    return item, True


async def get_item(db: AsyncIOMotorDatabase, actor: Account, item_id: str) -> InventoryItem:
    document = await db.inventory.find_one({"_id": parse_object_id(item_id, "Inventory item")})
    if not document:
        raise NotFoundError("Inventory item not found")
    item = InventoryItem(**document)
    _check_owner(actor, item, "access")
    return item


async def update_stock(
    db: AsyncIOMotorDatabase,
    actor: Account,
    item_id: str,
    payload: InventoryUpdate,
    now: Optional[datetime] = None,
) -> InventoryItem:
    item = await get_item(db, actor, item_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "expiry_date" in changes:
        changes["expiry_date"] = to_naive_utc(changes["expiry_date"])
    changes["updated_at"] = now or utcnow()
    updated = await db.inventory.find_one_and_update(
        {"_id": ObjectId(item.id)},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    return InventoryItem(**updated)


async def remove_stock(
    db: AsyncIOMotorDatabase,
    actor: Account,
    item_id: str,
    now: Optional[datetime] = None,
) -> None:
    item = await get_item(db, actor, item_id)
    await db.inventory.update_one(
        {"_id": ObjectId(item.id)},
        {"$set": {"is_active": False, "updated_at": now or utcnow()}},
    )
    logger.info("Inventory item {} deactivated by {}", item.id, actor.id)


async def list_stock(db: AsyncIOMotorDatabase, hospital_id: ObjectId) -> List[InventoryItem]:
    cursor = db.inventory.find({"hospital_id": hospital_id, "is_active": True}).sort(
        [("blood_group", 1), ("expiry_date", 1)]
    )
    return [InventoryItem(**document) async for document in cursor]


async def list_all_stock(db: AsyncIOMotorDatabase) -> List[Tuple[InventoryItem, Optional[Dict[str, Any]]]]:
    cursor = db.inventory.find({"is_active": True}).sort([("blood_group", 1), ("created_at", -1)])
    items = [InventoryItem(**document) async for document in cursor]
    hospitals = await fetch_users(db, {item.hospital_id for item in items})
    return [(item, hospitals.get(item.hospital_id)) for item in items]


async def search_available(
    db: AsyncIOMotorDatabase,
    blood_group: BloodGroup,
    city: Optional[str] = None,
    state: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[List[Dict[str, Any]], int]:
    """Usable units of a blood group across hospitals, grouped by hospital.

    Returns the hospital groups and the number of matching items.
    """
    now = now or utcnow()
    query: Dict[str, Any] = {
        "blood_group": BloodGroup(blood_group).value,
        "quantity": {"$gt": 0},
        "expiry_date": {"$gt": now},
        "is_active": True,
    }
    if city or state:
        hospital_filter: Dict[str, Any] = {"role": "hospital", "is_active": True}
        if city:
            hospital_filter["city"] = contains_filter(city)
        if state:
            hospital_filter["state"] = contains_filter(state)
        hospital_ids = [doc["_id"] async for doc in db.users.find(hospital_filter, {"_id": 1})]
        if not hospital_ids:
            return [], 0
        query["hospital_id"] = {"$in": hospital_ids}

    cursor = db.inventory.find(query).sort([("quantity", -1), ("expiry_date", 1)])
    items = [InventoryItem(**document) async for document in cursor]
    hospitals = await fetch_users(db, {item.hospital_id for item in items})

    grouped: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for item in items:
        hospital = hospitals.get(item.hospital_id)
        if hospital is None:
            continue
        entry = grouped.setdefault(item.hospital_id, {"hospital": hospital_summary(hospital), "bloodUnits": []})
        entry["bloodUnits"].append(blood_unit_document(item, now))
    return list(grouped.values()), len(items)


def _hospital_query(hospital_id: Optional[ObjectId]) -> Dict[str, Any]:
    query: Dict[str, Any] = {"is_active": True}
    if hospital_id is not None:
        query["hospital_id"] = hospital_id
    return query


async def low_stock_alerts(db: AsyncIOMotorDatabase, hospital_id: Optional[ObjectId]) -> List[InventoryItem]:
    query = _hospital_query(hospital_id)
    query["quantity"] = {"$lt": settings.low_stock_threshold}
    return [InventoryItem(**document) async for document in db.inventory.find(query).sort("quantity", 1)]


async def expiry_alerts(
    db: AsyncIOMotorDatabase,
    hospital_id: Optional[ObjectId],
    now: Optional[datetime] = None,
) -> Dict[str, List[InventoryItem]]:
    now = now or utcnow()
    horizon = now + timedelta(days=settings.expiry_warning_days)

    soon_query = _hospital_query(hospital_id)
    soon_query["expiry_date"] = {"$gt": now, "$lte": horizon}
    expired_query = _hospital_query(hospital_id)
    expired_query["expiry_date"] = {"$lt": now}

    expiring_soon = [InventoryItem(**doc) async for doc in db.inventory.find(soon_query).sort("expiry_date", 1)]
    expired = [InventoryItem(**doc) async for doc in db.inventory.find(expired_query).sort("expiry_date", 1)]
    return {"expiring_soon": expiring_soon, "expired": expired}


async def summary(
    db: AsyncIOMotorDatabase,
    hospital_id: Optional[ObjectId],
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Usable quantity per blood group, always listing all eight groups."""
    now = now or utcnow()
    query = _hospital_query(hospital_id)
    query["expiry_date"] = {"$gt": now}

    totals = {group: {"bloodGroup": group, "totalQuantity": 0, "itemCount": 0} for group in BLOOD_GROUPS}
    async for document in db.inventory.find(query, {"blood_group": 1, "quantity": 1}):
        entry = totals.get(document["blood_group"])
        if entry is None:
            continue
        entry["totalQuantity"] += document.get("quantity", 0)
        entry["itemCount"] += 1
    return [totals[group] for group in BLOOD_GROUPS]


async def consume_stock(
    db: AsyncIOMotorDatabase,
    hospital_id: ObjectId,
    blood_group: BloodGroup,
    quantity: int,
    now: Optional[datetime] = None,
) -> Optional[InventoryItem]:
    """Take units from the oldest-expiring batch that can cover the whole quantity.

    The quantity guard sits in the update filter, so a batch never goes negative
    even when two approvals race for it.
    """
    now = now or utcnow()
    updated = await db.inventory.find_one_and_update(
        {
            "hospital_id": hospital_id,
            "blood_group": BloodGroup(blood_group).value,
            "quantity": {"$gte": quantity},
            "expiry_date": {"$gt": now},
            "is_active": True,
        },
        {"$inc": {"quantity": -quantity}, "$set": {"updated_at": now}},
        sort=[("expiry_date", 1)],
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        return None
    return InventoryItem(**updated)


async def return_stock(
    db: AsyncIOMotorDatabase,
    item: InventoryItem,
    quantity: int,
    now: Optional[datetime] = None,
) -> None:
    """Put units taken by ``consume_stock`` back on the batch they came from."""
    await db.inventory.update_one(
        {"_id": ObjectId(item.id)},
        {"$inc": {"quantity": quantity}, "$set": {"updated_at": now or utcnow()}},
    )
    logger.info("Returned {} unit(s) to batch {}", quantity, item.id)
