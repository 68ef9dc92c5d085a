from datetime import datetime,timezone
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

def now() -> datetime:
    return datetime.now(timezone.utc)


def build_success(data: Dict[str, Any], request_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "status": "ok",
        "data": data,
        "error": None,
        "request_id": request_id,
    }

def build_error(kind: str = "ServerError",
                message: str = "Internal Server Error",
                request_id: Optional[str] = None,
                retry_after: Optional[int] = None,
                remaining_attempts: Optional[int] = None,
                retryable: bool = False) -> Dict[str, Any]:

    error: Dict[str, Any] = {"errorKind": kind, "message": message, "retryable": retryable}
    if retry_after is not None:
        error["retryAfter"] = retry_after
    if remaining_attempts is not None:
        error["remainingAttempts"] = remaining_attempts

    return {
        "status": "error",
        "data": None,
        "error": error,
        "request_id": request_id,
    }

def json_ok(content: Dict[str, Any], status_code: int = 200,headers = None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code,headers=headers)

def json_error(content: Dict[str, Any], status_code: int = 500, headers=None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=headers)

def success_response(data: Dict[str, Any], status_code: int = 200,headers: Optional[Dict[str, Any]] = None,
                     request_id: Optional[str] = None) -> JSONResponse:
    content = build_success(data, request_id=request_id)
    return json_ok(content, status_code=status_code,headers=headers)
