from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from .common import CamelPayload, MongoBaseModel, PyObjectId
from .enums import BloodGroup, DonationStatus, DonationType


class BloodPressure(MongoBaseModel):
    systolic: Optional[float] = Field(default=None, ge=0)
    diastolic: Optional[float] = Field(default=None, ge=0)


class Vitals(MongoBaseModel):
    hemoglobin: Optional[float] = Field(default=None, ge=0)
    blood_pressure: Optional[BloodPressure] = None
    weight: Optional[float] = Field(default=None, ge=0)
    pulse: Optional[float] = Field(default=None, ge=0)


class Donation(MongoBaseModel):
    id: PyObjectId = Field(alias="_id")
    donor_id: PyObjectId
    hospital_id: PyObjectId
    blood_group: BloodGroup
    quantity: int = Field(default=1, ge=1)
    donation_date: datetime
    vitals: Vitals = Field(default_factory=Vitals)
    donation_type: DonationType = DonationType.WHOLE_BLOOD
    status: DonationStatus = DonationStatus.COMPLETED
    batch_number: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DonationCreate(CamelPayload):
    donor_id: str
    blood_group: BloodGroup
    quantity: int = Field(default=1, ge=1)
    donation_date: Optional[datetime] = None
    vitals: Optional[Vitals] = None
    donation_type: DonationType = DonationType.WHOLE_BLOOD
    status: DonationStatus = DonationStatus.COMPLETED
    batch_number: Optional[str] = Field(default=None, max_length=64)
    notes: Optional[str] = Field(default=None, max_length=500)
    hospital_id: Optional[str] = None


class DonationUpdate(CamelPayload):
    vitals: Optional[Vitals] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    status: Optional[DonationStatus] = None
    rejection_reason: Optional[str] = None
