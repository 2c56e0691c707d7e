from __future__ import annotations

import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TWILIO_SID", "")
os.environ.setdefault("TWILIO_TOKEN", "")

import itertools
from datetime import datetime
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from bloodnet.database import get_database
from bloodnet.main import app
from bloodnet.models.user import Account, load_account
from bloodnet.utils.security import create_access_token, hash_password

PASSWORD = "secret123"
NOW = datetime(2026, 3, 1, 12, 0, 0)

_emails = itertools.count(1)


def user_fields(role: str, **overrides: Any) -> Dict[str, Any]:
    document: Dict[str, Any] = {
        "name": f"Test {role.title()}",
        "email": f"{role}{next(_emails)}@example.com",
        "password": hash_password(PASSWORD),
        "phone": "9876543210",
        "role": role,
        "city": "Pune",
        "state": "Maharashtra",
        "address": "1 MG Road",
        "is_active": True,
        "created_at": NOW,
        "updated_at": NOW,
    }
    if role == "donor":
        document.update({"blood_group": "O+", "last_donation_date": None, "is_available": True})
    elif role == "patient":
        document["blood_group"] = "A+"
    elif role == "hospital":
        document.update({"hospital_name": "City Hospital", "registration_number": "REG-1"})
    document.update(overrides)
    return document


@pytest.fixture
def db():
    return AsyncMongoMockClient()["bloodnet_test"]


@pytest.fixture
def make_user(db):
    async def _make(role: str = "donor", **overrides: Any) -> Account:
        document = user_fields(role, **overrides)
        result = await db.users.insert_one(document)
        document["_id"] = result.inserted_id
        return load_account(document)

    return _make


@pytest.fixture
def client(db):
    async def _database():
        return db

    app.dependency_overrides[get_database] = _database
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_header(account: Account) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(account.id)}"}
