from __future__ import annotations

from typing import Any, Dict, Optional

from .pagination import Pagination


def envelope(data: Any = None, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def paginated(data: Any, pagination: Pagination, total: int) -> Dict[str, Any]:
    return envelope(data, pagination=pagination.meta(total))


def error_body(message: str, errors: Any = None, stack: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    if stack:
        body["stack"] = stack
    return body
