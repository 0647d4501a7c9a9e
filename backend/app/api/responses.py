"""
REST response envelope.

Success: {success: true, message, data, timestamp}
Error:   {success: false, message, error: {code, message}, timestamp}
"""
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi.responses import JSONResponse

from app.core.exceptions import RealtimeError


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def ok(data: Any = None, message: str = "OK") -> dict:
    return {"success": True, "message": message, "data": data, "timestamp": _timestamp()}


def error_body(code: str, message: str, request_id: Optional[str] = None) -> dict:
    body = {
        "success": False,
        "message": message,
        "error": {"code": code, "message": message},
        "timestamp": _timestamp(),
    }
    if request_id:
        body["request_id"] = request_id
    return body


def error_response(err: RealtimeError, request_id: Optional[str] = None) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if err.status_code == 401 else None
    return JSONResponse(
        status_code=err.status_code,
        content=error_body(err.code, err.message, request_id),
        headers=headers,
    )
