"""Registration, credentials, profiles and the admin user directory."""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from ..models.user import (
    Account,
    AdminUserUpdate,
    PasswordChange,
    ProfileUpdate,
    Registration,
    load_account,
)
from ..utils.dates import utcnow
from ..utils.ids import parse_object_id
from ..utils.pagination import Pagination
from ..utils.security import hash_password, verify_password
from .eligibility import is_eligible_to_donate
from .inventory import contains_filter
from .lookups import USER_PROJECTION

HOSPITAL_FIELDS = {
    "name": 1,
    "hospital_name": 1,
    "city": 1,
    "state": 1,
    "phone": 1,
    "email": 1,
    "address": 1,
    "registration_number": 1,
}
DONOR_FIELDS = {
    "name": 1,
    "blood_group": 1,
    "city": 1,
    "state": 1,
    "phone": 1,
    "is_available": 1,
    "last_donation_date": 1,
}


async def email_exists(db: AsyncIOMotorDatabase, email: str) -> bool:
    return await db.users.find_one({"email": email.strip().lower()}, {"_id": 1}) is not None


async def register(
    db: AsyncIOMotorDatabase,
    payload: Registration,
    now: Optional[datetime] = None,
) -> Account:
    now = now or utcnow()
    if await email_exists(db, payload.email):
        raise ValidationError("Email already registered")

    document = payload.model_dump(mode="json", exclude={"password"})
    document.update(
        {
            "password": hash_password(payload.password),
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
    )
    if payload.role == "donor":
        document.update({"last_donation_date": None, "is_available": True})
    try:
        result = await db.users.insert_one(document)
    except DuplicateKeyError as exc:
        raise ValidationError("Email already registered") from exc
    document["_id"] = result.inserted_id
    logger.info("Registered {} account {}", payload.role, result.inserted_id)
    return load_account(document)


async def create_admin(
    db: AsyncIOMotorDatabase,
    email: str,
    password: str,
    name: str = "System Admin",
    now: Optional[datetime] = None,
) -> bool:
    """Insert an admin account unless one already uses the email."""
    email = email.strip().lower()
    if await email_exists(db, email):
        return False
    now = now or utcnow()
    await db.users.insert_one(
        {
            "name": name,
            "email": email,
            "password": hash_password(password),
            "phone": "0000000000",
            "role": "admin",
            "city": "Headquarters",
            "state": "N/A",
            "address": None,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
    )
    logger.info("Seeded admin account {}", email)
    return True


async def authenticate(db: AsyncIOMotorDatabase, email: str, password: str) -> Account:
    document = await db.users.find_one({"email": email.strip().lower()})
    if not document:
        raise AuthenticationError("Invalid credentials")
    if not document.get("is_active", True):
        raise AuthenticationError("Your account has been deactivated. Please contact admin.")
    if not verify_password(password, document.get("password", "")):
        raise AuthenticationError("Invalid credentials")
    return load_account(document)


async def load_active_account(db: AsyncIOMotorDatabase, user_id: str) -> Account:
    """Resolve a token subject to an account; unknown or disabled accounts are refused."""
    try:
        object_id = ObjectId(user_id)
    except (InvalidId, TypeError) as exc:
        raise AuthenticationError("Invalid token. Please log in again.") from exc
    document = await db.users.find_one({"_id": object_id}, USER_PROJECTION)
    if not document:
        raise AuthenticationError("User not found")
    if not document.get("is_active", True):
        raise AuthenticationError("Your account has been deactivated. Please contact admin.")
    return load_account(document)


async def _update_user(db: AsyncIOMotorDatabase, user_id: ObjectId, changes: Dict[str, Any]) -> Dict[str, Any]:
    try:
        document = await db.users.find_one_and_update(
            {"_id": user_id},
            {"$set": changes},
            projection=USER_PROJECTION,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError as exc:
        raise ValidationError("Email already registered") from exc
    if not document:
        raise NotFoundError("User not found")
    return document


async def update_profile(
    db: AsyncIOMotorDatabase,
    actor: Account,
    payload: ProfileUpdate,
    now: Optional[datetime] = None,
) -> Account:
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if actor.role != "donor":
        changes.pop("is_available", None)
    if actor.role != "hospital":
        changes.pop("hospital_name", None)
    changes["updated_at"] = now or utcnow()
    document = await _update_user(db, ObjectId(actor.id), changes)
    return load_account(document)


async def change_password(
    db: AsyncIOMotorDatabase,
    actor: Account,
    payload: PasswordChange,
    now: Optional[datetime] = None,
) -> None:
    document = await db.users.find_one({"_id": ObjectId(actor.id)}, {"password": 1})
    if not document or not verify_password(payload.current_password, document.get("password", "")):
        raise AuthenticationError("Current password is incorrect")
    await db.users.update_one(
        {"_id": document["_id"]},
        {"$set": {"password": hash_password(payload.new_password), "updated_at": now or utcnow()}},
    )
    logger.info("Password changed for account {}", actor.id)


async def list_users(
    db: AsyncIOMotorDatabase,
    pagination: Pagination,
    role: Optional[str] = None,
    blood_group: Optional[str] = None,
    city: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], int]:
    query: Dict[str, Any] = {}
    if role:
        query["role"] = role
    if blood_group:
        query["blood_group"] = blood_group
    if city:
        query["city"] = contains_filter(city)
    if is_active is not None:
        query["is_active"] = is_active
    if search:
        query["$or"] = [{"name": contains_filter(search)}, {"email": contains_filter(search)}]
    cursor = (
        db.users.find(query, USER_PROJECTION)
        .sort("created_at", -1)
        .skip(pagination.skip)
        .limit(pagination.limit)
    )
    users = [document async for document in cursor]
    total = await db.users.count_documents(query)
    return users, total


async def get_user(db: AsyncIOMotorDatabase, user_id: str) -> Dict[str, Any]:
    document = await db.users.find_one({"_id": parse_object_id(user_id, "User")}, USER_PROJECTION)
    if not document:
        raise NotFoundError("User not found")
    return document


async def admin_update_user(
    db: AsyncIOMotorDatabase,
    user_id: str,
    payload: AdminUserUpdate,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    target = await get_user(db, user_id)
    object_id = target["_id"]
    changes = payload.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    if target.get("role") not in ("donor", "patient"):
        changes.pop("blood_group", None)
    if target.get("role") != "donor":
        changes.pop("is_available", None)
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        clash = await db.users.find_one({"email": changes["email"], "_id": {"$ne": object_id}}, {"_id": 1})
        if clash:
            raise ValidationError("Email already registered")
    changes["updated_at"] = now or utcnow()
    document = await _update_user(db, object_id, changes)
    logger.info("Admin updated account {}: {}", user_id, sorted(changes))
    return document


async def delete_user(db: AsyncIOMotorDatabase, user_id: str) -> None:
    document = await get_user(db, user_id)
    if document.get("role") == "admin":
        raise AuthorizationError("Cannot delete admin users")
    await db.users.delete_one({"_id": document["_id"]})
    logger.info("Deleted {} account {}", document.get("role"), user_id)


async def list_hospitals(
    db: AsyncIOMotorDatabase,
    city: Optional[str] = None,
    state: Optional[str] = None,
) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {"role": "hospital", "is_active": True}
    if city:
        query["city"] = contains_filter(city)
    if state:
        query["state"] = contains_filter(state)
    return [document async for document in db.users.find(query, HOSPITAL_FIELDS).sort("name", 1)]


async def search_donors(
    db: AsyncIOMotorDatabase,
    blood_group: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    available: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Active donors, available ones first, longest since last donation first."""
    now = now or utcnow()
    query: Dict[str, Any] = {"role": "donor", "is_active": True}
    if blood_group:
        query["blood_group"] = blood_group
    if city:
        query["city"] = contains_filter(city)
    if state:
        query["state"] = contains_filter(state)
    if available is not None:
        query["is_available"] = available
    donors = [document async for document in db.users.find(query, DONOR_FIELDS)]
    donors.sort(
        key=lambda donor: (
            not donor.get("is_available", False),
            donor.get("last_donation_date") is not None,
            donor.get("last_donation_date") or datetime.min,
        )
    )
    for donor in donors:
        donor["is_eligible"] = is_eligible_to_donate(donor.get("last_donation_date"), now)
    return donors


async def user_stats(db: AsyncIOMotorDatabase, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    since = now - timedelta(days=30)
    by_role: Counter = Counter()
    by_blood_group: Counter = Counter()
    by_city: Counter = Counter()
    available_donors = 0
    recent = 0
    projection = {"role": 1, "blood_group": 1, "city": 1, "is_available": 1, "is_active": 1, "created_at": 1}
    async for document in db.users.find({}, projection):
        role = document.get("role")
        by_role[role] += 1
        if document.get("blood_group"):
            by_blood_group[document["blood_group"]] += 1
        by_city[document.get("city")] += 1
        if role == "donor" and document.get("is_available") and document.get("is_active", True):
            available_donors += 1
        created_at = document.get("created_at")
        if created_at is not None and created_at >= since:
            recent += 1
    return {
        "totalUsers": sum(by_role.values()),
        "totalDonors": by_role["donor"],
        "totalPatients": by_role["patient"],
        "totalHospitals": by_role["hospital"],
        "availableDonors": available_donors,
        "recentRegistrations": recent,
        "usersByRole": [{"role": key, "count": count} for key, count in by_role.items()],
        "usersByBloodGroup": [{"bloodGroup": key, "count": count} for key, count in sorted(by_blood_group.items())],
        "usersByCity": [{"city": key, "count": count} for key, count in by_city.most_common(10)],
    }
