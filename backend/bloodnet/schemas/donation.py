from __future__ import annotations

from typing import Any, Dict, Optional

from ..models.donation import Donation
from .user import hospital_summary, person_summary


def donation_document(
    donation: Donation,
    donor: Optional[Dict[str, Any]] = None,
    hospital: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    document = donation.model_dump(by_alias=True, mode="json")
    if donor is not None:
        document["donor"] = person_summary(donor)
    if hospital is not None:
        document["hospital"] = hospital_summary(hospital)
    return document
