from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from ..models.request import EmergencyRequest
from ..utils.dates import utcnow
from .user import hospital_summary, person_summary


def request_document(
    request: EmergencyRequest,
    patient: Optional[Dict[str, Any]] = None,
    assigned_hospital: Optional[Dict[str, Any]] = None,
    now: datetime | None = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    document = request.model_dump(by_alias=True, mode="json")
    document["isOverdue"] = request.is_overdue(now)
    document["timeRemaining"] = request.time_remaining(now)
    if patient is not None:
        document["patient"] = person_summary(patient)
    if assigned_hospital is not None:
        document["assignedHospitalDetails"] = hospital_summary(assigned_hospital)
    return document
