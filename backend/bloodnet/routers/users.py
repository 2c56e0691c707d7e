from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database import get_database
from ..models.enums import BloodGroup
from ..models.user import Account, AdminUserUpdate
from ..schemas.user import user_document
from ..services import accounts, dashboards
from ..utils.pagination import Pagination, pagination_params
from ..utils.responses import envelope, paginated
from .auth import get_current_user, require_roles

router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
async def list_users(
    role: Optional[str] = None,
    blood_group: Optional[BloodGroup] = Query(None, alias="bloodGroup"),
    city: Optional[str] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    search: Optional[str] = None,
    pagination: Pagination = Depends(pagination_params),
    _: Account = Depends(require_roles("admin")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    users, total = await accounts.list_users(
        db,
        pagination,
        role=role,
        blood_group=blood_group.value if blood_group else None,
        city=city,
        is_active=is_active,
        search=search,
    )
    return paginated([user_document(user) for user in users], pagination, total)


@router.get("/stats")
async def user_stats(
    _: Account = Depends(require_roles("admin")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    return envelope(await accounts.user_stats(db))


@router.get("/hospitals")
async def list_hospitals(
    city: Optional[str] = None,
    state: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    hospitals = await accounts.list_hospitals(db, city, state)
    return envelope([user_document(hospital) for hospital in hospitals], count=len(hospitals))


@router.get("/donors/search")
async def search_donors(
    blood_group: Optional[BloodGroup] = Query(None, alias="bloodGroup"),
    city: Optional[str] = None,
    state: Optional[str] = None,
    available: Optional[bool] = None,
    _: Account = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    donors = await accounts.search_donors(
        db,
        blood_group=blood_group.value if blood_group else None,
        city=city,
        state=state,
        available=available,
    )
    return envelope([user_document(donor) for donor in donors], count=len(donors))


@router.get("/donor/dashboard")
async def donor_dashboard(
    user: Account = Depends(require_roles("donor")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    return envelope(await dashboards.donor_dashboard(db, user))


@router.get("/patient/dashboard")
async def patient_dashboard(
    user: Account = Depends(require_roles("patient")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    return envelope(await dashboards.patient_dashboard(db, user))


@router.get("/hospital/dashboard")
async def hospital_dashboard(
    user: Account = Depends(require_roles("hospital")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    return envelope(await dashboards.hospital_dashboard(db, user))


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    _: Account = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    return envelope(user_document(await accounts.get_user(db, user_id)))


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    payload: AdminUserUpdate,
    _: Account = Depends(require_roles("admin")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    document = await accounts.admin_update_user(db, user_id, payload)
    return envelope(user_document(document), "User updated successfully")


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    _: Account = Depends(require_roles("admin")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    await accounts.delete_user(db, user_id)
    return envelope(message="User deleted successfully")
