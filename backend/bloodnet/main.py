from __future__ import annotations

import time
import traceback
from typing import Any, Dict, List

import pydantic
import socketio
from bson.errors import InvalidId
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .database import db, ensure_indexes, settings
from .errors import AppError, ServerError
from .routers import auth, donations, inventory, requests, users
from .services.accounts import create_admin
from .utils.live_updates import hub, sio
from .utils.logging import configure_logging
from .utils.responses import error_body

configure_logging(settings.log_level)

app = FastAPI(title="BloodNet API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router in (auth.router, users.router, inventory.router, donations.router, requests.router):
    app.include_router(router, prefix="/api")


if not settings.is_production:

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info("{} {} -> {} ({:.1f} ms)", request.method, request.url.path, response.status_code, elapsed_ms)
        return response


def _error_response(status_code: int, message: str, exc: Exception, errors: Any = None) -> JSONResponse:
    if status_code >= 500:
        logger.opt(exception=exc).error("Unhandled error: {}", message)
    else:
        logger.warning("{} {}", status_code, message)
    stack = None if settings.is_production else "".join(traceback.format_exception(exc))
    return JSONResponse(status_code=status_code, content=jsonable_encoder(error_body(message, errors, stack)))


def _field_errors(errors: List[Dict[str, Any]], skip_location: bool) -> List[Dict[str, str]]:
    fields = []
    for error in errors:
        location = [str(part) for part in error.get("loc", ())]
        if skip_location and location and location[0] in {"body", "query", "path", "header"}:
            location = location[1:]
        fields.append({"field": ".".join(location), "message": error.get("msg", "Invalid value")})
    return fields


@app.exception_handler(AppError)
async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    return _error_response(exc.status_code, exc.message, exc, exc.errors)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(400, "Validation failed", exc, _field_errors(exc.errors(), skip_location=True))


@app.exception_handler(pydantic.ValidationError)
async def model_validation_handler(_: Request, exc: pydantic.ValidationError) -> JSONResponse:
    return _error_response(400, "Validation failed", exc, _field_errors(exc.errors(), skip_location=False))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404 and message == "Not Found":
        message = "Route not found"
    return _error_response(exc.status_code, message, exc)


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(_: Request, exc: DuplicateKeyError) -> JSONResponse:
    return _error_response(400, "Duplicate field value entered", exc)


@app.exception_handler(InvalidId)
async def invalid_id_handler(_: Request, exc: InvalidId) -> JSONResponse:
    return _error_response(404, "Resource not found", exc)


@app.exception_handler(Exception)
async def server_error_handler(_: Request, exc: Exception) -> JSONResponse:
    error = ServerError("Internal server error")
    return _error_response(error.status_code, error.message, exc)


@app.get("/health")
async def healthcheck() -> Dict[str, str]:
    return {"status": "ok", "environment": settings.environment}


@app.get("/api")
async def api_index() -> Dict[str, Any]:
    return {
        "success": True,
        "message": "BloodNet API",
        "version": app.version,
        "endpoints": {
            "auth": "/api/auth",
            "users": "/api/users",
            "inventory": "/api/inventory",
            "donations": "/api/donations",
            "requests": "/api/requests",
        },
    }


@app.websocket("/ws/updates")
async def updates_websocket(websocket: WebSocket) -> None:
    await hub.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(websocket)


@sio.event
async def connect(sid, environ):  # pragma: no cover - socket handshake
    logger.debug("Socket client {} connected", sid)


@sio.event
async def disconnect(sid):  # pragma: no cover - socket handshake
    logger.debug("Socket client {} disconnected", sid)


socket_app = socketio.ASGIApp(sio, other_asgi_app=app)


@app.on_event("startup")
async def prepare_database() -> None:
    try:
        await ensure_indexes(db)
        await create_admin(
            db,
            settings.default_admin_email,
            settings.default_admin_password,
            settings.default_admin_name,
        )
    except PyMongoError as exc:  # pragma: no cover - external service
        logger.warning("MongoDB unavailable; skipping index creation and admin seeding: {}", exc)
