"""Donation recording.

A completed donation fans out into two more writes: the donor's eligibility
state and a new inventory batch at the collecting hospital. The writes are
issued one after another without a transaction.
"""
from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from ..database import settings
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..models.donation import Donation, DonationCreate, DonationUpdate
from ..models.enums import DonationStatus, InventorySource
from ..models.user import Account, load_account
from ..schemas.donation import donation_document
from ..utils.dates import start_of_month, to_naive_utc, utcnow
from ..utils.ids import parse_object_id
from ..utils.logging import log_db_error
from ..utils.pagination import Pagination
from .inventory import insert_stock, owning_hospital
from .lookups import fetch_users

TERMINAL_DONATION_STATUSES = {DonationStatus.COMPLETED, DonationStatus.REJECTED, DonationStatus.CANCELLED}


def donation_batch_number(donation_id: str) -> str:
    return f"DON-{str(donation_id)[-8:].upper()}"


async def _load_donor(db: AsyncIOMotorDatabase, donor_id: Any) -> Dict[str, Any]:
    donor = await db.users.find_one(
        {"_id": parse_object_id(donor_id, "Donor"), "role": "donor", "is_active": True},
        {"password": 0},
    )
    if not donor:
        raise NotFoundError("Donor not found")
    return donor


async def _apply_completion(
    db: AsyncIOMotorDatabase,
    donation: Donation,
    donor: Dict[str, Any],
    now: datetime,
) -> None:
    """Mark the donor as recently donated and stock the collected units."""
    try:
        await db.users.update_one(
            {"_id": donor["_id"]},
            {
                "$set": {
                    "last_donation_date": donation.donation_date,
                    "is_available": False,
                    "updated_at": now,
                }
            },
        )
        await insert_stock(
            db,
            ObjectId(donation.hospital_id),
            donation.blood_group,
            donation.quantity,
            now + timedelta(days=settings.blood_shelf_life_days),
            batch_number=donation.batch_number or donation_batch_number(donation.id),
            source=InventorySource.DONATION,
            notes=f"From donation by {donor.get('name')}",
            collection_date=donation.donation_date,
            now=now,
        )
    except PyMongoError as exc:
        log_db_error(f"completing donation {donation.id}", exc)
        raise


async def record_donation(
    db: AsyncIOMotorDatabase,
    actor: Account,
    payload: DonationCreate,
    now: Optional[datetime] = None,
) -> Donation:
    now = now or utcnow()
    donor_document = await _load_donor(db, payload.donor_id)
    donor = load_account(donor_document)
    if not donor.is_eligible_to_donate(now):
        raise ValidationError(
            f"Donor is not eligible to donate. Must wait {settings.donation_cooldown_days} days since last donation."
        )
    if donor.blood_group != payload.blood_group:
        logger.warning(
            "Donation blood group {} differs from donor {} profile group {}",
            payload.blood_group.value,
            donor.id,
            donor.blood_group.value,
        )

    document: Dict[str, Any] = {
        "donor_id": donor_document["_id"],
        "hospital_id": await owning_hospital(db, actor, payload.hospital_id),
        "blood_group": payload.blood_group.value,
        "quantity": payload.quantity,
        "donation_date": to_naive_utc(payload.donation_date) if payload.donation_date else now,
        "vitals": payload.vitals.model_dump() if payload.vitals else {},
        "donation_type": payload.donation_type.value,
        "status": payload.status.value,
        "batch_number": payload.batch_number,
        "notes": payload.notes,
        "created_at": now,
        "updated_at": now,
    }
    result = await db.donations.insert_one(document)
    document["_id"] = result.inserted_id
    donation = Donation(**document)

    if donation.status == DonationStatus.COMPLETED:
        await _apply_completion(db, donation, donor_document, now)
    logger.info(
        "Recorded {} donation {} from donor {} at hospital {}",
        donation.status.value,
        donation.id,
        donation.donor_id,
        donation.hospital_id,
    )
    return donation


async def _find_donation(db: AsyncIOMotorDatabase, donation_id: str) -> Donation:
    document = await db.donations.find_one({"_id": parse_object_id(donation_id, "Donation")})
    if not document:
        raise NotFoundError("Donation not found")
    return Donation(**document)


async def update_donation(
    db: AsyncIOMotorDatabase,
    actor: Account,
    donation_id: str,
    payload: DonationUpdate,
    now: Optional[datetime] = None,
) -> Donation:
    now = now or utcnow()
    donation = await _find_donation(db, donation_id)
    if actor.role != "admin" and donation.hospital_id != actor.id:
        raise AuthorizationError("Not authorized to update this donation")

    changes: Dict[str, Any] = {"updated_at": now}
    if payload.vitals is not None:
        merged = donation.vitals.model_dump()
        merged.update(payload.vitals.model_dump(exclude_unset=True))
        changes["vitals"] = merged
    if payload.notes is not None:
        changes["notes"] = payload.notes

    completing = False
    if payload.status is not None and payload.status != donation.status:
        if donation.status in TERMINAL_DONATION_STATUSES:
            raise ValidationError(f"Cannot change the status of a {donation.status.value} donation")
        completing = payload.status == DonationStatus.COMPLETED
        changes["status"] = payload.status.value
        if payload.status == DonationStatus.REJECTED and payload.rejection_reason:
            changes["rejection_reason"] = payload.rejection_reason

    donor_document = await _load_donor(db, donation.donor_id) if completing else None
    updated = await db.donations.find_one_and_update(
        {"_id": ObjectId(donation.id), "status": donation.status.value},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ValidationError("Donation was modified concurrently, please retry")
    donation = Donation(**updated)

    if donor_document is not None:
        await _apply_completion(db, donation, donor_document, now)
    return donation


async def get_donation(
    db: AsyncIOMotorDatabase,
    actor: Account,
    donation_id: str,
) -> Tuple[Donation, Dict[str, Dict[str, Any]]]:
    donation = await _find_donation(db, donation_id)
    if actor.role != "admin" and actor.id not in (donation.donor_id, donation.hospital_id):
        raise AuthorizationError("Not authorized to view this donation")
    users = await fetch_users(db, [donation.donor_id, donation.hospital_id])
    return donation, users


def _role_scope(actor: Account) -> Dict[str, Any]:
    if actor.role == "donor":
        return {"donor_id": ObjectId(actor.id)}
    if actor.role == "hospital":
        return {"hospital_id": ObjectId(actor.id)}
    if actor.role == "admin":
        return {}
    raise AuthorizationError(f"User role '{actor.role}' is not authorized to view donations")


async def list_donations(
    db: AsyncIOMotorDatabase,
    actor: Account,
    pagination: Pagination,
    blood_group: Optional[str] = None,
    status: Optional[str] = None,
) -> Tuple[List[Donation], int, Dict[str, Dict[str, Any]]]:
    query = _role_scope(actor)
    if blood_group:
        query["blood_group"] = blood_group
    if status:
        query["status"] = status
    cursor = db.donations.find(query).sort("donation_date", -1).skip(pagination.skip).limit(pagination.limit)
    donations = [Donation(**document) async for document in cursor]
    total = await db.donations.count_documents(query)
    users = await fetch_users(db, {d.donor_id for d in donations} | {d.hospital_id for d in donations})
    return donations, total, users


async def donor_history(
    db: AsyncIOMotorDatabase, donor_id: str
) -> Tuple[List[Donation], Dict[str, Dict[str, Any]]]:
    cursor = db.donations.find({"donor_id": ObjectId(donor_id)}).sort("donation_date", -1)
    donations = [Donation(**document) async for document in cursor]
    hospitals = await fetch_users(db, {d.hospital_id for d in donations})
    return donations, hospitals


async def hospital_donations(
    db: AsyncIOMotorDatabase, hospital_id: str
) -> Tuple[List[Donation], Dict[str, Dict[str, Any]]]:
    cursor = db.donations.find({"hospital_id": ObjectId(hospital_id)}).sort("donation_date", -1)
    donations = [Donation(**document) async for document in cursor]
    donors = await fetch_users(db, {d.donor_id for d in donations})
    return donations, donors


async def recent_donations(
    db: AsyncIOMotorDatabase,
    actor: Optional[Account] = None,
    limit: int = 10,
    completed_only: bool = False,
) -> Tuple[List[Donation], Dict[str, Dict[str, Any]]]:
    query = _role_scope(actor) if actor is not None else {}
    if completed_only:
        query["status"] = DonationStatus.COMPLETED.value
    cursor = db.donations.find(query).sort("donation_date", -1).limit(limit)
    donations = [Donation(**document) async for document in cursor]
    users = await fetch_users(db, {d.donor_id for d in donations} | {d.hospital_id for d in donations})
    return donations, users


async def delete_donation(db: AsyncIOMotorDatabase, donation_id: str) -> None:
    result = await db.donations.delete_one({"_id": parse_object_id(donation_id, "Donation")})
    if result.deleted_count == 0:
        raise NotFoundError("Donation not found")


def _by_blood_group(donations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    totals: Dict[str, Dict[str, int]] = defaultdict(lambda: {"totalDonations": 0, "totalUnits": 0})
    for donation in donations:
        entry = totals[donation["blood_group"]]
        entry["totalDonations"] += 1
        entry["totalUnits"] += donation.get("quantity", 0)
    rows = [{"bloodGroup": group, **values} for group, values in totals.items()]
    return sorted(rows, key=lambda row: row["totalDonations"], reverse=True)


async def statistics(
    db: AsyncIOMotorDatabase,
    actor: Account,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Completed-donation figures scoped to the caller's role."""
    now = now or utcnow()
    query: Dict[str, Any] = {**_role_scope(actor), "status": DonationStatus.COMPLETED.value}
    completed = [doc async for doc in db.donations.find(query)]

    if actor.role == "donor":
        by_type = Counter(doc.get("donation_type") for doc in completed)
        last = max((doc["donation_date"] for doc in completed), default=None)
        return {
            "totalDonations": len(completed),
            "totalUnits": sum(doc.get("quantity", 0) for doc in completed),
            "lastDonation": last,
            "donationsByType": [{"donationType": key, "count": count} for key, count in by_type.items()],
        }

    month_start = start_of_month(now)
    stats: Dict[str, Any] = {
        "byBloodGroup": _by_blood_group(completed),
        "total": len(completed),
        "thisMonth": sum(1 for doc in completed if month_start <= doc["donation_date"] <= now),
    }
    if actor.role == "admin":
        recent, users = await recent_donations(db, limit=10, completed_only=True)
        stats["recent"] = [
            donation_document(donation, users.get(donation.donor_id), users.get(donation.hospital_id))
            for donation in recent
        ]
    return stats
