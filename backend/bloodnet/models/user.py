from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import EmailStr, Field, TypeAdapter, field_validator

from ..services.eligibility import days_until_eligible, is_eligible_to_donate
from .common import CamelPayload, MongoBaseModel, PyObjectId
from .enums import BloodGroup


UserRole = Literal["donor", "patient", "hospital", "admin"]
PhoneNumber = Annotated[str, Field(pattern=r"^[0-9]{10}$")]


class AccountBase(MongoBaseModel):
    id: PyObjectId = Field(alias="_id")
    name: str
    email: str
    phone: str
    city: str
    state: str
    address: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DonorAccount(AccountBase):
    role: Literal["donor"] = "donor"
    blood_group: BloodGroup
    last_donation_date: Optional[datetime] = None
    is_available: bool = True

    def is_eligible_to_donate(self, now: datetime | None = None) -> bool:
        return is_eligible_to_donate(self.last_donation_date, now)

    def days_until_eligible(self, now: datetime | None = None) -> int:
        return days_until_eligible(self.last_donation_date, now)


class PatientAccount(AccountBase):
    role: Literal["patient"] = "patient"
    blood_group: BloodGroup


class HospitalAccount(AccountBase):
    role: Literal["hospital"] = "hospital"
    hospital_name: str
    registration_number: Optional[str] = None


class AdminAccount(AccountBase):
    role: Literal["admin"] = "admin"


Account = Annotated[
    Union[DonorAccount, PatientAccount, HospitalAccount, AdminAccount],
    Field(discriminator="role"),
]
account_adapter: TypeAdapter[Account] = TypeAdapter(Account)


def load_account(document: dict) -> Account:
    """Build the role variant for a stored user document."""
    return account_adapter.validate_python(document)


class _RegistrationBase(CamelPayload):
    name: str = Field(min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    phone: PhoneNumber
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    address: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


class DonorRegistration(_RegistrationBase):
    role: Literal["donor"]
    blood_group: BloodGroup


class PatientRegistration(_RegistrationBase):
    role: Literal["patient"]
    blood_group: BloodGroup


class HospitalRegistration(_RegistrationBase):
    role: Literal["hospital"]
    hospital_name: str = Field(min_length=1)
    registration_number: Optional[str] = None


Registration = Annotated[
    Union[DonorRegistration, PatientRegistration, HospitalRegistration],
    Field(discriminator="role"),
]


class UserLogin(CamelPayload):
    email: EmailStr
    password: str = Field(min_length=1)


class EmailCheck(CamelPayload):
    email: EmailStr


class ProfileUpdate(CamelPayload):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    phone: Optional[PhoneNumber] = None
    city: Optional[str] = Field(default=None, min_length=1)
    state: Optional[str] = Field(default=None, min_length=1)
    address: Optional[str] = None
    is_available: Optional[bool] = None
    hospital_name: Optional[str] = Field(default=None, min_length=1)


class PasswordChange(CamelPayload):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6, max_length=128)


class AdminUserUpdate(CamelPayload):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[PhoneNumber] = None
    blood_group: Optional[BloodGroup] = None
    city: Optional[str] = Field(default=None, min_length=1)
    state: Optional[str] = Field(default=None, min_length=1)
    is_active: Optional[bool] = None
    is_available: Optional[bool] = None


registration_adapter: TypeAdapter[Registration] = TypeAdapter(Registration)
