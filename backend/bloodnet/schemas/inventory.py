from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from ..models.inventory import InventoryItem
from ..utils.dates import utcnow
from .user import hospital_summary


def inventory_document(
    item: InventoryItem,
    now: datetime | None = None,
    hospital: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Stored fields plus the read-time status flags, which are never persisted."""
    now = now or utcnow()
    document = item.model_dump(by_alias=True, mode="json")
    document["isExpired"] = item.is_expired(now)
    document["isExpiringSoon"] = item.is_expiring_soon(now)
    document["isLowStock"] = item.is_low_stock()
    document["daysUntilExpiry"] = item.days_until_expiry(now)
    if hospital is not None:
        document["hospital"] = hospital_summary(hospital)
    return document


def blood_unit_document(item: InventoryItem, now: datetime | None = None) -> Dict[str, Any]:
    return {
        "_id": item.id,
        "bloodGroup": item.blood_group.value,
        "quantity": item.quantity,
        "expiryDate": item.expiry_date.isoformat(),
        "batchNumber": item.batch_number,
        "daysUntilExpiry": item.days_until_expiry(now),
    }
