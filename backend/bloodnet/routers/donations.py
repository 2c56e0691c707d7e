from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database import get_database
from ..errors import ValidationError
from ..models.enums import BloodGroup, DonationStatus
from ..models.donation import DonationCreate, DonationUpdate
from ..models.user import Account
from ..schemas.donation import donation_document
from ..services import donations
from ..utils.pagination import Pagination, pagination_params
from ..utils.responses import envelope, paginated
from .auth import get_current_user, require_roles

router = APIRouter(prefix="/donations", tags=["donations"])
staff = require_roles("hospital", "admin")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_donation(
    payload: DonationCreate,
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    donation = await donations.record_donation(db, user, payload)
    return envelope(donation_document(donation), "Donation recorded successfully")


@router.get("/my-donations")
async def my_donations(
    user: Account = Depends(require_roles("donor")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    history, hospitals = await donations.donor_history(db, user.id)
    data = [donation_document(d, hospital=hospitals.get(d.hospital_id)) for d in history]
    return envelope(data, count=len(data))


@router.get("/hospital")
async def hospital_donations(
    hospital_id: Optional[str] = Query(None, alias="hospitalId"),
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    if user.role == "hospital":
        hospital_id = user.id
    elif not hospital_id:
        raise ValidationError("hospitalId is required")
    received, donors = await donations.hospital_donations(db, hospital_id)
    data = [donation_document(d, donor=donors.get(d.donor_id)) for d in received]
    return envelope(data, count=len(data))


@router.get("")
async def list_donations(
    blood_group: Optional[BloodGroup] = Query(None, alias="bloodGroup"),
    donation_status: Optional[DonationStatus] = Query(None, alias="status"),
    pagination: Pagination = Depends(pagination_params),
    user: Account = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    rows, total, users = await donations.list_donations(
        db,
        user,
        pagination,
        blood_group=blood_group.value if blood_group else None,
        status=donation_status.value if donation_status else None,
    )
    data = [donation_document(d, users.get(d.donor_id), users.get(d.hospital_id)) for d in rows]
    return paginated(data, pagination, total)


@router.get("/recent")
async def recent_donations(
    limit: int = Query(10, ge=1, le=100),
    user: Account = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    rows, users = await donations.recent_donations(db, user, limit=limit)
    data = [donation_document(d, users.get(d.donor_id), users.get(d.hospital_id)) for d in rows]
    return envelope(data, count=len(data))


@router.get("/stats")
async def donation_stats(
    user: Account = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    return envelope(await donations.statistics(db, user))


@router.get("/{donation_id}")
async def get_donation(
    donation_id: str,
    user: Account = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    donation, users = await donations.get_donation(db, user, donation_id)
    return envelope(donation_document(donation, users.get(donation.donor_id), users.get(donation.hospital_id)))


@router.put("/{donation_id}")
async def update_donation(
    donation_id: str,
    payload: DonationUpdate,
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    donation = await donations.update_donation(db, user, donation_id, payload)
    return envelope(donation_document(donation), "Donation updated successfully")


@router.delete("/{donation_id}")
async def delete_donation(
    donation_id: str,
    _: Account = Depends(require_roles("admin")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    await donations.delete_donation(db, donation_id)
    return envelope(message="Donation deleted successfully")
