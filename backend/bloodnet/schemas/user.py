from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId
from pydantic.alias_generators import to_camel

from ..models.user import Account


def public_profile(account: Account) -> Dict[str, Any]:
    return account.model_dump(by_alias=True, mode="json")


def _jsonable(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def user_document(user: Dict[str, Any]) -> Dict[str, Any]:
    """Raw user document in the camelCase wire shape, password removed."""
    document: Dict[str, Any] = {}
    for key, value in user.items():
        if key == "password":
            continue
        document[key if key == "_id" else to_camel(key)] = _jsonable(value)
    return document


def hospital_summary(hospital: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not hospital:
        return None
    return {
        "_id": str(hospital.get("_id")),
        "name": hospital.get("name"),
        "hospitalName": hospital.get("hospital_name"),
        "city": hospital.get("city"),
        "state": hospital.get("state"),
        "phone": hospital.get("phone"),
        "email": hospital.get("email"),
        "address": hospital.get("address"),
        "registrationNumber": hospital.get("registration_number"),
    }


def person_summary(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    return {
        "_id": str(user.get("_id")),
        "name": user.get("name"),
        "email": user.get("email"),
        "phone": user.get("phone"),
        "bloodGroup": user.get("blood_group"),
        "city": user.get("city"),
        "state": user.get("state"),
    }
