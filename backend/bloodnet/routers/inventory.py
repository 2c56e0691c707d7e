from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database import get_database
from ..errors import ValidationError
from ..models.enums import BloodGroup
from ..models.inventory import InventoryCreate, InventoryUpdate
from ..models.user import Account
from ..schemas.inventory import inventory_document
from ..services import inventory
from ..utils.dates import utcnow
from ..utils.responses import envelope
from .auth import require_roles

router = APIRouter(prefix="/inventory", tags=["inventory"])
staff = require_roles("hospital", "admin")


@router.get("/search")
async def search_blood(
    blood_group: BloodGroup = Query(..., alias="bloodGroup"),
    city: Optional[str] = None,
    state: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    groups, count = await inventory.search_available(db, blood_group, city, state)
    return envelope(groups, count=count)


@router.get("")
async def list_inventory(
    hospital_id: Optional[str] = Query(None, alias="hospitalId"),
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    scope = inventory.scope_hospital(user, hospital_id)
    if scope is None:
        raise ValidationError("hospitalId is required")
    now = utcnow()
    items = await inventory.list_stock(db, scope)
    return envelope([inventory_document(item, now) for item in items], count=len(items))


@router.get("/summary")
async def inventory_summary(
    hospital_id: Optional[str] = Query(None, alias="hospitalId"),
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    return envelope(await inventory.summary(db, inventory.scope_hospital(user, hospital_id)))


@router.get("/alerts/low-stock")
async def low_stock(
    hospital_id: Optional[str] = Query(None, alias="hospitalId"),
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    now = utcnow()
    items = await inventory.low_stock_alerts(db, inventory.scope_hospital(user, hospital_id))
    return envelope([inventory_document(item, now) for item in items], count=len(items))


@router.get("/alerts/expiring")
async def expiring(
    hospital_id: Optional[str] = Query(None, alias="hospitalId"),
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    now = utcnow()
    alerts = await inventory.expiry_alerts(db, inventory.scope_hospital(user, hospital_id), now)
    return envelope(
        {
            "expiringSoon": {
                "count": len(alerts["expiring_soon"]),
                "items": [inventory_document(item, now) for item in alerts["expiring_soon"]],
            },
            "expired": {
                "count": len(alerts["expired"]),
                "items": [inventory_document(item, now) for item in alerts["expired"]],
            },
        }
    )


@router.get("/all")
async def all_inventory(
    _: Account = Depends(require_roles("admin")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    now = utcnow()
    rows = await inventory.list_all_stock(db)
    return envelope([inventory_document(item, now, hospital) for item, hospital in rows], count=len(rows))


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_inventory(
    payload: InventoryCreate,
    response: Response,
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    item, created = await inventory.add_stock(db, user, payload)
    if not created:
        response.status_code = status.HTTP_200_OK
        return envelope(inventory_document(item), "Inventory updated (merged with existing batch)")
    return envelope(inventory_document(item), "Inventory added successfully")


@router.get("/{item_id}")
async def get_inventory_item(
    item_id: str,
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    return envelope(inventory_document(await inventory.get_item(db, user, item_id)))


@router.put("/{item_id}")
async def update_inventory(
    item_id: str,
    payload: InventoryUpdate,
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    item = await inventory.update_stock(db, user, item_id, payload)
    return envelope(inventory_document(item), "Inventory updated successfully")


@router.delete("/{item_id}")
async def delete_inventory(
    item_id: str,
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    await inventory.remove_stock(db, user, item_id)
    return envelope(message="Inventory item removed successfully")
