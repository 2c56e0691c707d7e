from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from ..database import settings
from ..utils.dates import ceil_days, utcnow
from .common import CamelPayload, MongoBaseModel, PyObjectId
from .enums import BloodGroup, InventorySource


class InventoryItem(MongoBaseModel):
    id: PyObjectId = Field(alias="_id")
    hospital_id: PyObjectId
    blood_group: BloodGroup
    quantity: int = Field(ge=0)
    unit: Literal["units", "ml"] = "units"
    expiry_date: datetime
    collection_date: Optional[datetime] = None
    batch_number: Optional[str] = None
    source: InventorySource = InventorySource.DONATION
    notes: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def days_until_expiry(self, now: datetime | None = None) -> int:
        return ceil_days(now or utcnow(), self.expiry_date)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expiry_date

    def is_expiring_soon(self, now: datetime | None = None) -> bool:
        days = self.days_until_expiry(now)
        return 0 < days <= settings.expiry_warning_days

    def is_low_stock(self) -> bool:
        return self.quantity < settings.low_stock_threshold


class InventoryCreate(CamelPayload):
    blood_group: BloodGroup
    quantity: int = Field(ge=1)
    expiry_date: datetime
    collection_date: Optional[datetime] = None
    batch_number: Optional[str] = Field(default=None, max_length=64)
    source: InventorySource = InventorySource.DONATION
    notes: Optional[str] = Field(default=None, max_length=500)
    hospital_id: Optional[str] = None


class InventoryUpdate(CamelPayload):
    quantity: Optional[int] = Field(default=None, ge=0)
    expiry_date: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None
