"""Role dashboards: one call assembling what each landing page shows."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..models.enums import RequestStatus
from ..models.inventory import InventoryItem
from ..models.request import EmergencyRequest
from ..models.user import DonorAccount, HospitalAccount, PatientAccount
from ..schemas.donation import donation_document
from ..schemas.inventory import inventory_document
from ..schemas.request import request_document
from ..schemas.user import public_profile
from ..utils.dates import utcnow
from .donations import donor_history, hospital_donations
from .inventory import expiry_alerts, list_stock, low_stock_alerts
from .lookups import fetch_users
from .requests import hospital_requests, my_requests

RECENT_LIMIT = 5
AVAILABLE_BLOOD_LIMIT = 10


async def donor_dashboard(
    db: AsyncIOMotorDatabase,
    donor: DonorAccount,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    donations, hospitals = await donor_history(db, donor.id)
    cursor = (
        db.requests.find(
            {
                "blood_group": donor.blood_group.value,
                "status": RequestStatus.PENDING.value,
                "location.city": donor.city,
            }
        )
        .sort([("urgency_rank", 1), ("created_at", 1)])
        .limit(RECENT_LIMIT)
    )
    nearby = [EmergencyRequest(**document) async for document in cursor]
    return {
        "profile": public_profile(donor),
        "isEligible": donor.is_eligible_to_donate(now),
        "daysUntilEligible": donor.days_until_eligible(now),
        "totalDonations": len(donations),
        "recentDonations": [
            donation_document(donation, hospital=hospitals.get(donation.hospital_id))
            for donation in donations[:RECENT_LIMIT]
        ],
        "nearbyRequests": [request_document(request, now=now) for request in nearby],
    }


async def patient_dashboard(
    db: AsyncIOMotorDatabase,
    patient: PatientAccount,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    requests = await my_requests(db, patient)
    cursor = db.inventory.find(
        {
            "blood_group": patient.blood_group.value,
            "quantity": {"$gt": 0},
            "expiry_date": {"$gt": now},
            "is_active": True,
        }
    ).limit(AVAILABLE_BLOOD_LIMIT)
    available = [InventoryItem(**document) async for document in cursor]
    hospitals = await fetch_users(db, {item.hospital_id for item in available})
    return {
        "profile": public_profile(patient),
        "totalRequests": len(requests),
        "pendingRequests": sum(1 for request in requests if request.status == RequestStatus.PENDING),
        "recentRequests": [request_document(request, now=now) for request in requests[:RECENT_LIMIT]],
        "availableBlood": [
            inventory_document(item, now, hospitals.get(item.hospital_id)) for item in available
        ],
    }


async def hospital_dashboard(
    db: AsyncIOMotorDatabase,
    hospital: HospitalAccount,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    hospital_id = ObjectId(hospital.id)
    inventory = await list_stock(db, hospital_id)
    low_stock = await low_stock_alerts(db, hospital_id)
    alerts = await expiry_alerts(db, hospital_id, now)
    donations, donors = await hospital_donations(db, hospital.id)
    requests = await hospital_requests(db, hospital.id)
    return {
        "profile": public_profile(hospital),
        "inventory": {
            "total": len(inventory),
            "lowStock": len(low_stock),
            "expired": len(alerts["expired"]),
            "expiringSoon": len(alerts["expiring_soon"]),
            "items": [inventory_document(item, now) for item in inventory],
        },
        "donations": {
            "total": len(donations),
            "recent": [
                donation_document(donation, donor=donors.get(donation.donor_id))
                for donation in donations[:RECENT_LIMIT]
            ],
        },
        "requests": {
            "total": len(requests),
            "pending": sum(1 for request in requests if request.status == RequestStatus.PENDING),
            "recent": [request_document(request, now=now) for request in requests[:RECENT_LIMIT]],
        },
    }
