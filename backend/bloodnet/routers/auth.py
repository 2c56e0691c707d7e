from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Security, status
from fastapi.security import OAuth2PasswordBearer
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database import get_database
from ..errors import AuthenticationError, AuthorizationError
from ..models.user import (
    Account,
    EmailCheck,
    PasswordChange,
    ProfileUpdate,
    UserLogin,
    UserRole,
    registration_adapter,
)
from ..schemas.user import public_profile
from ..services import accounts
from ..utils.responses import envelope
from ..utils.security import create_access_token, decode_token

router = APIRouter(prefix="/auth", tags=["auth"])
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


async def get_current_user(
    token: str | None = Security(oauth2_scheme),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Account:
    if not token:
        raise AuthenticationError("Not authorized, no token")
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token. Please log in again.")
    return await accounts.load_active_account(db, user_id)


def require_roles(*roles: UserRole):
    def dependency(user: Account = Depends(get_current_user)) -> Account:
        if roles and user.role not in roles:
            raise AuthorizationError(f"User role '{user.role}' is not authorized to access this route")
        return user

    return dependency


def _session(account: Account) -> Dict[str, Any]:
    return {"user": public_profile(account), "token": create_access_token(account.id)}


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    payload: Dict[str, Any] = Body(...),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    registration = registration_adapter.validate_python(payload)
    account = await accounts.register(db, registration)
    return envelope(_session(account), "Registration successful")


@router.post("/login")
async def login(payload: UserLogin, db: AsyncIOMotorDatabase = Depends(get_database)) -> Dict[str, Any]:
    account = await accounts.authenticate(db, payload.email, payload.password)
    return envelope(_session(account), "Login successful")


@router.post("/check-email")
async def check_email(payload: EmailCheck, db: AsyncIOMotorDatabase = Depends(get_database)) -> Dict[str, Any]:
    return envelope(exists=await accounts.email_exists(db, payload.email))


@router.get("/me")
async def me(user: Account = Depends(get_current_user)) -> Dict[str, Any]:
    return envelope(public_profile(user))


@router.put("/profile")
async def update_profile(
    payload: ProfileUpdate,
    user: Account = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    account = await accounts.update_profile(db, user, payload)
    return envelope(public_profile(account), "Profile updated successfully")


@router.put("/password")
async def change_password(
    payload: PasswordChange,
    user: Account = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_database),
) -> Dict[str, Any]:
    await accounts.change_password(db, user, payload)
    return envelope(message="Password changed successfully")


@router.post("/logout")
async def logout(_: Account = Depends(get_current_user)) -> Dict[str, Any]:
    return envelope(message="Logged out successfully")
