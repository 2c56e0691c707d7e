from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database import get_database
from ..models.enums import BloodGroup, RequestStatus, UrgencyLevel
from ..models.request import AssignPayload, EmergencyRequest, RequestCreate, StatusUpdate
from ..models.user import Account
from ..schemas.inventory import inventory_document
from ..schemas.request import request_document
from ..services import requests
from ..services.lookups import fetch_users
from ..utils.live_updates import hub
from ..utils.notifications import notification_service
from ..utils.pagination import Pagination, pagination_params
from ..utils.responses import envelope, paginated
from .auth import get_current_user, require_roles

router = APIRouter(prefix="/requests", tags=["requests"])
staff = require_roles("hospital", "admin")


async def _populated(db: AsyncIOMotorDatabase, request: EmergencyRequest) -> Dict[str, Any]:
    users = await fetch_users(db, [request.patient_id, request.assigned_hospital])
    return request_document(request, users.get(request.patient_id), users.get(request.assigned_hospital))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_request(
    payload: RequestCreate,
    background_tasks: BackgroundTasks,
    user: Account = Depends(require_roles("patient", "admin")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    request, matching_hospitals, donors = await requests.create_request(db, user, payload)
    document = request_document(request)
    if donors:
        background_tasks.add_task(notification_service.alert_donors, request, donors)
    background_tasks.add_task(hub.notify, "request_created", document)
    return envelope(
        {
            "request": document,
            "matchingHospitals": matching_hospitals,
            "matchingDonorsCount": len(donors),
        },
        "Emergency request created successfully",
    )


@router.get("/my-requests")
async def my_requests(
    user: Account = Depends(require_roles("patient")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    rows = await requests.my_requests(db, user)
    hospitals = await fetch_users(db, {r.assigned_hospital for r in rows})
    data = [request_document(r, assigned_hospital=hospitals.get(r.assigned_hospital)) for r in rows]
    return envelope(data, count=len(data))


@router.get("")
async def list_requests(
    request_status: Optional[RequestStatus] = Query(None, alias="status"),
    blood_group: Optional[BloodGroup] = Query(None, alias="bloodGroup"),
    urgency_level: Optional[UrgencyLevel] = Query(None, alias="urgencyLevel"),
    city: Optional[str] = None,
    pagination: Pagination = Depends(pagination_params),
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    rows, total = await requests.list_requests(
        db,
        user,
        pagination,
        status=request_status.value if request_status else None,
        blood_group=blood_group.value if blood_group else None,
        urgency_level=urgency_level.value if urgency_level else None,
        city=city,
    )
    users = await fetch_users(db, {r.patient_id for r in rows} | {r.assigned_hospital for r in rows})
    data = [request_document(r, users.get(r.patient_id), users.get(r.assigned_hospital)) for r in rows]
    return paginated(data, pagination, total)


@router.get("/critical")
async def critical_requests(
    _: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    rows = await requests.critical_requests(db)
    patients = await fetch_users(db, {r.patient_id for r in rows})
    data = [request_document(r, patients.get(r.patient_id)) for r in rows]
    return envelope(data, count=len(data))


@router.get("/stats")
async def request_stats(
    _: Account = Depends(require_roles("admin")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    return envelope(await requests.request_stats(db))


@router.put("/{request_id}/status")
async def update_status(
    request_id: str,
    payload: StatusUpdate,
    background_tasks: BackgroundTasks,
    user: Account = Depends(staff),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    request, consumed = await requests.update_status(db, user, request_id, payload)
    document = await _populated(db, request)
    background_tasks.add_task(hub.notify, "request_updated", document)
    body = envelope(document, f"Request {request.status.value} successfully")
    if request.status == RequestStatus.APPROVED:
        body["inventoryUpdated"] = consumed is not None
        if consumed is not None:
            body["inventoryItem"] = inventory_document(consumed)
    return body


@router.put("/{request_id}/cancel")
async def cancel_request(
    request_id: str,
    background_tasks: BackgroundTasks,
    user: Account = Depends(require_roles("patient")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    request = await requests.cancel_request(db, user, request_id)
    document = request_document(request)
    background_tasks.add_task(hub.notify, "request_updated", document)
    return envelope(document, "Request cancelled successfully")


@router.put("/{request_id}/assign")
async def assign_request(
    request_id: str,
    payload: AssignPayload,
    user: Account = Depends(require_roles("admin")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    request = await requests.assign_request(db, user, request_id, payload.hospital_id)
    return envelope(await _populated(db, request), "Request assigned successfully")


@router.get("/{request_id}")
async def get_request(
    request_id: str,
    user: Account = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    request = await requests.get_request(db, user, request_id)
    return envelope(await _populated(db, request))


@router.delete("/{request_id}")
async def delete_request(
    request_id: str,
    _: Account = Depends(require_roles("admin")),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    await requests.delete_request(db, request_id)
    return envelope(message="Request deleted successfully")
