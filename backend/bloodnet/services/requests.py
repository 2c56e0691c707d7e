"""Emergency blood request workflow.

Requests start ``pending`` and move through a small one-directional state
machine. Approval assigns the acting hospital and takes the requested units
from its oldest-expiring usable batch.
"""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from ..database import settings
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..models.enums import URGENCY_RANK, BloodGroup, RequestStatus, UrgencyLevel
from ..models.inventory import InventoryItem
from ..models.request import EmergencyRequest, RequestCreate, StatusUpdate
from ..models.user import Account
from ..schemas.user import hospital_summary
from ..utils.dates import to_naive_utc, utcnow
from ..utils.ids import parse_object_id
from ..utils.pagination import Pagination
from .inventory import consume_stock, contains_filter, return_stock
from .lookups import fetch_users, get_active_hospital

ALLOWED_TRANSITIONS: Dict[RequestStatus, set] = {
    RequestStatus.PENDING: {
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.COMPLETED,
        RequestStatus.CANCELLED,
    },
    RequestStatus.APPROVED: {RequestStatus.COMPLETED},
    RequestStatus.REJECTED: set(),
    RequestStatus.COMPLETED: set(),
    RequestStatus.CANCELLED: set(),
}
TERMINAL_STATUSES = {status for status, targets in ALLOWED_TRANSITIONS.items() if not targets}


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def ensure_transition(current: RequestStatus, target: RequestStatus) -> None:
    if current in TERMINAL_STATUSES:
        raise ValidationError(f"Request is already {current.value} and can no longer change")
    if not can_transition(current, target):
        raise ValidationError(f"Cannot change request status from {current.value} to {target.value}")


def hospital_can_act(actor: Account, request: EmergencyRequest) -> bool:
    """Hospitals act on requests assigned to them, or claim unassigned pending ones."""
    if request.assigned_hospital is not None:
        return request.assigned_hospital == actor.id
    return request.status == RequestStatus.PENDING


async def _find_request(db: AsyncIOMotorDatabase, request_id: str) -> EmergencyRequest:
    document = await db.requests.find_one({"_id": parse_object_id(request_id, "Request")})
    if not document:
        raise NotFoundError("Request not found")
    return EmergencyRequest(**document)


async def _conditional_update(
    db: AsyncIOMotorDatabase,
    request: EmergencyRequest,
    changes: Dict[str, Any],
) -> EmergencyRequest:
    """Write changes only if the status is still the one the decision was based on."""
    updated = await db.requests.find_one_and_update(
        {"_id": ObjectId(request.id), "status": request.status.value},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ValidationError("Request status changed concurrently, please reload it")
    return EmergencyRequest(**updated)


async def find_matches(
    db: AsyncIOMotorDatabase,
    blood_group: BloodGroup,
    quantity: int,
    city: str,
    now: Optional[datetime] = None,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Hospitals holding a batch big enough for the request, and available donors in the city."""
    now = now or utcnow()
    cursor = db.inventory.find(
        {
            "blood_group": BloodGroup(blood_group).value,
            "quantity": {"$gte": quantity},
            "expiry_date": {"$gt": now},
            "is_active": True,
        }
    ).sort("quantity", -1)
    items = [InventoryItem(**document) async for document in cursor]
    hospitals = await fetch_users(db, {item.hospital_id for item in items})

    matching: Dict[str, Dict[str, Any]] = {}
    for item in items:
        hospital = hospitals.get(item.hospital_id)
        if hospital is None or not hospital.get("is_active", True):
            continue
        entry = matching.setdefault(
            item.hospital_id,
            {"hospital": hospital_summary(hospital), "availableQuantity": 0, "batches": 0},
        )
        entry["availableQuantity"] += item.quantity
        entry["batches"] += 1
    matching_hospitals = sorted(matching.values(), key=lambda entry: entry["availableQuantity"], reverse=True)

    donors_cursor = db.users.find(
        {
            "role": "donor",
            "blood_group": BloodGroup(blood_group).value,
            "city": {"$regex": f"^{contains_filter(city)['$regex']}$", "$options": "i"},
            "is_available": True,
            "is_active": True,
        },
        {"name": 1, "email": 1, "phone": 1},
    )
    donors = [donor async for donor in donors_cursor]
    return matching_hospitals, donors


async def create_request(
    db: AsyncIOMotorDatabase,
    actor: Account,
    payload: RequestCreate,
    now: Optional[datetime] = None,
) -> Tuple[EmergencyRequest, List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Open a pending request and look up who could fill it.

    Returns the request, the matching hospitals and the matching donor documents.
    The matches are informational and are not stored.
    """
    now = now or utcnow()
    required_by = to_naive_utc(payload.required_by)
    if required_by <= now:
        raise ValidationError("Required by date must be in the future")

    document: Dict[str, Any] = {
        "patient_id": ObjectId(actor.id),
        "blood_group": payload.blood_group.value,
        "quantity": payload.quantity,
        "urgency_level": payload.urgency_level.value,
        "urgency_rank": URGENCY_RANK[payload.urgency_level],
        "status": RequestStatus.PENDING.value,
        "location": payload.location.model_dump(),
        "assigned_hospital": None,
        "assigned_at": None,
        "patient_name": payload.patient_name,
        "patient_phone": payload.patient_phone,
        "hospital": payload.hospital,
        "doctor_name": payload.doctor_name,
        "reason": payload.reason,
        "required_by": required_by,
        "completed_at": None,
        "created_at": now,
        "updated_at": now,
    }
    result = await db.requests.insert_one(document)
    document["_id"] = result.inserted_id
    request = EmergencyRequest(**document)

    matching_hospitals, donors = await find_matches(
        db, payload.blood_group, payload.quantity, payload.location.city, now
    )
    logger.info(
        "Request {} opened: {} x{} ({}) in {}; {} hospital(s), {} donor(s) match",
        request.id,
        request.blood_group.value,
        request.quantity,
        request.urgency_level.value,
        request.location.city,
        len(matching_hospitals),
        len(donors),
    )
    return request, matching_hospitals, donors


async def update_status(
    db: AsyncIOMotorDatabase,
    actor: Account,
    request_id: str,
    payload: StatusUpdate,
    now: Optional[datetime] = None,
    approve_without_stock: Optional[bool] = None,
) -> Tuple[EmergencyRequest, Optional[InventoryItem]]:
    """Move a request to a new status on behalf of a hospital or an admin.

    Returns the updated request and, for approvals, the batch stock was taken
    from (None when no batch could cover the quantity).
    """
    now = now or utcnow()
    if approve_without_stock is None:
        approve_without_stock = settings.approve_without_stock
    if actor.role not in ("hospital", "admin"):
        raise AuthorizationError("Only hospitals can respond to emergency requests")

    request = await _find_request(db, request_id)
    target = payload.status
    if actor.role == "hospital":
        if not hospital_can_act(actor, request):
            raise AuthorizationError("Not authorized to update this request")
        if target == RequestStatus.CANCELLED:
            raise AuthorizationError("Only the requesting patient can cancel a request")
    ensure_transition(request.status, target)

    changes: Dict[str, Any] = {"status": target.value, "updated_at": now}
    if payload.notes:
        changes["notes"] = payload.notes

    if target == RequestStatus.REJECTED:
        if not payload.rejection_reason:
            raise ValidationError("A rejection reason is required")
        changes["rejection_reason"] = payload.rejection_reason

    if target == RequestStatus.COMPLETED:
        changes["completed_at"] = now

    consumed: Optional[InventoryItem] = None
    if target == RequestStatus.APPROVED:
        if actor.role == "admin" and request.assigned_hospital is not None:
            hospital_id = request.assigned_hospital
        else:
            hospital_id = actor.id
        changes["assigned_hospital"] = ObjectId(hospital_id)
        changes["assigned_at"] = now

        if not approve_without_stock:
            consumed = await consume_stock(db, ObjectId(hospital_id), request.blood_group, request.quantity, now)
            if consumed is None:
                raise ValidationError(
                    f"No batch of {request.blood_group.value} holds {request.quantity} unit(s) at this hospital"
                )
            try:
                request = await _conditional_update(db, request, changes)
            except ValidationError:
                await return_stock(db, consumed, request.quantity, now)
                raise
            return request, consumed

        request = await _conditional_update(db, request, changes)
        consumed = await consume_stock(db, ObjectId(hospital_id), request.blood_group, request.quantity, now)
        if consumed is None:
            logger.warning(
                "Request {} approved by {} but no {} batch covers {} unit(s); stock left unchanged",
                request.id,
                hospital_id,
                request.blood_group.value,
                request.quantity,
            )
        else:
            logger.info("Took {} unit(s) from batch {} for request {}", request.quantity, consumed.id, request.id)
        return request, consumed

    request = await _conditional_update(db, request, changes)
    logger.info("Request {} moved to {} by {}", request.id, target.value, actor.id)
    return request, None


async def cancel_request(
    db: AsyncIOMotorDatabase,
    actor: Account,
    request_id: str,
    now: Optional[datetime] = None,
) -> EmergencyRequest:
    request = await _find_request(db, request_id)
    if request.patient_id != actor.id:
        raise AuthorizationError("Not authorized to cancel this request")
    if request.status != RequestStatus.PENDING:
        raise ValidationError("Can only cancel pending requests")
    request = await _conditional_update(
        db,
        request,
        {"status": RequestStatus.CANCELLED.value, "updated_at": now or utcnow()},
    )
    logger.info("Request {} cancelled by patient {}", request.id, actor.id)
    return request


async def assign_request(
    db: AsyncIOMotorDatabase,
    actor: Account,
    request_id: str,
    hospital_id: str,
    now: Optional[datetime] = None,
) -> EmergencyRequest:
    if actor.role != "admin":
        raise AuthorizationError("Admin access required")
    request = await _find_request(db, request_id)
    if request.status in TERMINAL_STATUSES:
        raise ValidationError(f"Request is already {request.status.value} and can no longer change")
    hospital = await get_active_hospital(db, hospital_id)
    now = now or utcnow()
    request = await _conditional_update(
        db,
        request,
        {"assigned_hospital": hospital["_id"], "assigned_at": now, "updated_at": now},
    )
    logger.info("Request {} assigned to hospital {}", request.id, hospital["_id"])
    return request


def _visibility(actor: Account) -> Dict[str, Any]:
    if actor.role == "admin":
        return {}
    if actor.role == "hospital":
        return {
            "$or": [
                {"assigned_hospital": ObjectId(actor.id)},
                {"status": RequestStatus.PENDING.value, "assigned_hospital": None},
            ]
        }
    if actor.role == "patient":
        return {"patient_id": ObjectId(actor.id)}
    raise AuthorizationError(f"User role '{actor.role}' is not authorized to view requests")


async def list_requests(
    db: AsyncIOMotorDatabase,
    actor: Account,
    pagination: Pagination,
    status: Optional[str] = None,
    blood_group: Optional[str] = None,
    urgency_level: Optional[str] = None,
    city: Optional[str] = None,
) -> Tuple[List[EmergencyRequest], int]:
    query = _visibility(actor)
    if status:
        query["status"] = status
    if blood_group:
        query["blood_group"] = blood_group
    if urgency_level:
        query["urgency_level"] = urgency_level
    if city:
        query["location.city"] = contains_filter(city)
    cursor = (
        db.requests.find(query)
        .sort([("urgency_rank", 1), ("created_at", -1)])
        .skip(pagination.skip)
        .limit(pagination.limit)
    )
    requests = [EmergencyRequest(**document) async for document in cursor]
    total = await db.requests.count_documents(query)
    return requests, total


async def critical_requests(db: AsyncIOMotorDatabase) -> List[EmergencyRequest]:
    cursor = db.requests.find(
        {"status": RequestStatus.PENDING.value, "urgency_level": UrgencyLevel.CRITICAL.value}
    ).sort("created_at", 1)
    return [EmergencyRequest(**document) async for document in cursor]


async def my_requests(db: AsyncIOMotorDatabase, actor: Account) -> List[EmergencyRequest]:
    cursor = db.requests.find({"patient_id": ObjectId(actor.id)}).sort("created_at", -1)
    return [EmergencyRequest(**document) async for document in cursor]


async def hospital_requests(db: AsyncIOMotorDatabase, hospital_id: str) -> List[EmergencyRequest]:
    cursor = db.requests.find({"assigned_hospital": ObjectId(hospital_id)}).sort("created_at", -1)
    return [EmergencyRequest(**document) async for document in cursor]


async def get_request(db: AsyncIOMotorDatabase, actor: Account, request_id: str) -> EmergencyRequest:
    request = await _find_request(db, request_id)
    if actor.role == "admin" or request.patient_id == actor.id:
        return request
    if actor.role == "hospital" and hospital_can_act(actor, request):
        return request
    raise AuthorizationError("Not authorized to view this request")


async def delete_request(db: AsyncIOMotorDatabase, request_id: str) -> None:
    result = await db.requests.delete_one({"_id": parse_object_id(request_id, "Request")})
    if result.deleted_count == 0:
        raise NotFoundError("Request not found")


async def request_stats(db: AsyncIOMotorDatabase, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    since = now - timedelta(days=30)
    by_status: Counter = Counter()
    by_blood_group: Counter = Counter()
    by_urgency: Counter = Counter()
    recent = 0
    projection = {"status": 1, "blood_group": 1, "urgency_level": 1, "created_at": 1}
    async for document in db.requests.find({}, projection):
        by_status[document.get("status")] += 1
        by_blood_group[document.get("blood_group")] += 1
        by_urgency[document.get("urgency_level")] += 1
        created_at = document.get("created_at")
        if created_at is not None and created_at >= since:
            recent += 1
    return {
        "total": sum(by_status.values()),
        "pending": by_status[RequestStatus.PENDING.value],
        "approved": by_status[RequestStatus.APPROVED.value],
        "completed": by_status[RequestStatus.COMPLETED.value],
        "recentRequests": recent,
        "byStatus": [{"status": key, "count": count} for key, count in by_status.items()],
        "byBloodGroup": [{"bloodGroup": key, "count": count} for key, count in sorted(by_blood_group.items())],
        "byUrgency": [{"urgencyLevel": key, "count": count} for key, count in by_urgency.items()],
    }
