from __future__ import annotations

from pathlib import Path

import motor.motor_asyncio
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConfigurationError


BASE_DIR = Path(__file__).resolve().parents[1]
ENV_FILES = [BASE_DIR / ".env.local", BASE_DIR / ".env"]


class Settings(BaseSettings):
    mongodb_url: str = "mongodb://localhost:27017/bloodnet"
    environment: str = "development"
    log_level: str = "INFO"
    jwt_secret: str = "supersecret"
    jwt_algorithm: str = "HS256"
    jwt_expires_min: int = 60 * 24 * 7
    bcrypt_rounds: int = 12
    mongo_server_timeout_ms: int = 2000
    mongo_connect_timeout_ms: int = 2000
    mongo_socket_timeout_ms: int = 2000
    frontend_url: str = "http://localhost:5173"
    donation_cooldown_days: int = 90
    blood_shelf_life_days: int = 42
    low_stock_threshold: int = 5
    expiry_warning_days: int = 7
    approve_without_stock: bool = True
    default_admin_email: str = "admin@bloodbank.com"
    default_admin_name: str = "System Admin"
    default_admin_password: str = "admin123"
    twilio_sid: str | None = None
    twilio_token: str | None = None
    twilio_phone: str | None = None
    sms_country_code: str = "+91"

    model_config = SettingsConfigDict(
        env_file=[str(path) for path in ENV_FILES],
        case_sensitive=False,
        env_prefix="",
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def get_settings() -> Settings:
    return Settings()


settings = get_settings()
FALLBACK_MONGO_URL = "mongodb://localhost:27017/bloodnet"
DEFAULT_DATABASE = "bloodnet"


def _create_client(uri: str) -> motor.motor_asyncio.AsyncIOMotorClient:
    connect_kwargs = {
        "serverSelectionTimeoutMS": settings.mongo_server_timeout_ms,
        "connectTimeoutMS": settings.mongo_connect_timeout_ms,
        "socketTimeoutMS": settings.mongo_socket_timeout_ms,
    }
    try:
        return motor.motor_asyncio.AsyncIOMotorClient(uri, **connect_kwargs)
    except ConfigurationError as exc:
        if uri == FALLBACK_MONGO_URL:
            raise
        logger.warning(
            "MongoDB DNS resolution failed for {} ({}). Falling back to local Mongo at {}.",
            uri,
            exc,
            FALLBACK_MONGO_URL,
        )
        return motor.motor_asyncio.AsyncIOMotorClient(FALLBACK_MONGO_URL, **connect_kwargs)


client = _create_client(settings.mongodb_url)
db = client.get_default_database(DEFAULT_DATABASE)


async def get_database() -> AsyncIOMotorDatabase:
    return db


async def ensure_indexes(database: AsyncIOMotorDatabase) -> None:
    """Create the indexes the query paths rely on, including the unique email index."""
    await database.users.create_index("email", unique=True)
    await database.users.create_index([("role", ASCENDING), ("blood_group", ASCENDING), ("city", ASCENDING)])
    await database.inventory.create_index([("hospital_id", ASCENDING), ("blood_group", ASCENDING)])
    await database.inventory.create_index("expiry_date")
    await database.donations.create_index([("donor_id", ASCENDING), ("donation_date", DESCENDING)])
    await database.donations.create_index([("hospital_id", ASCENDING), ("donation_date", DESCENDING)])
    await database.requests.create_index("patient_id")
    await database.requests.create_index("assigned_hospital")
    await database.requests.create_index([("status", ASCENDING), ("urgency_rank", ASCENDING)])
    await database.requests.create_index([("blood_group", ASCENDING), ("location.city", ASCENDING)])
