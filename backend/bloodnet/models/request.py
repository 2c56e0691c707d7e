from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from ..utils.dates import utcnow
from .common import CamelPayload, MongoBaseModel, PyObjectId
from .enums import BloodGroup, RequestStatus, UrgencyLevel


class Coordinates(MongoBaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Location(MongoBaseModel):
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    coordinates: Optional[Coordinates] = None


class EmergencyRequest(MongoBaseModel):
    id: PyObjectId = Field(alias="_id")
    patient_id: PyObjectId
    blood_group: BloodGroup
    quantity: int = Field(default=1, ge=1)
    urgency_level: UrgencyLevel = UrgencyLevel.NORMAL
    status: RequestStatus = RequestStatus.PENDING
    location: Location
    assigned_hospital: Optional[PyObjectId] = None
    assigned_at: Optional[datetime] = None
    patient_name: str
    patient_phone: str
    hospital: str
    doctor_name: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    required_by: datetime
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_overdue(self, now: datetime | None = None) -> bool:
        return self.status == RequestStatus.PENDING and (now or utcnow()) > self.required_by

    def time_remaining(self, now: datetime | None = None) -> Optional[str]:
        if self.status != RequestStatus.PENDING:
            return None
        remaining = (self.required_by - (now or utcnow())).total_seconds()
        if remaining < 0:
            return "Overdue"
        hours = int(remaining // 3600)
        minutes = int((remaining % 3600) // 60)
        return f"{hours}h {minutes}m"


class RequestCreate(CamelPayload):
    blood_group: BloodGroup
    quantity: int = Field(default=1, ge=1)
    urgency_level: UrgencyLevel = UrgencyLevel.NORMAL
    location: Location
    patient_name: str = Field(min_length=1)
    patient_phone: str = Field(min_length=1)
    hospital: str = Field(min_length=1)
    doctor_name: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=500)
    required_by: datetime


class StatusUpdate(CamelPayload):
    status: RequestStatus
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None


class AssignPayload(CamelPayload):
    hospital_id: str = Field(min_length=1)
