"""Response envelope shared by every vendor, customer and collaborator endpoint.

    {"code": 0, "message": "success", "data": {...}, "timestamp": "...", "request_id": "req_..."}

`code` is 0 on success, otherwise one of the stable codes in errors.py.
`data` is null on error, except validation failures which carry
`{"details": [...]}` so the caller can fix every field in one round trip.
"""

import uuid
from typing import Any

from fastapi import Request
from pydantic import BaseModel, Field

from src.vd_common.datetime_utils import utc_now


def _new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def _request_id(request: Request | None) -> str:
    if request is None:
        return _new_request_id()
    # set by RequestLogMiddleware; absent when a handler is called outside it
    return getattr(request.state, "request_id", None) or _new_request_id()


class ApiResponse(BaseModel):
    code: int = 0
    message: str = "success"
    data: Any = None
    timestamp: str = Field(default_factory=lambda: utc_now().isoformat())
    request_id: str = Field(default_factory=_new_request_id)


def success_response(data: Any = None, request: Request | None = None) -> ApiResponse:
    return ApiResponse(data=data, request_id=_request_id(request))


def error_response(
    code: int,
    message: str,
    request: Request | None = None,
    details: list[str] | None = None,
) -> ApiResponse:
    return ApiResponse(
        code=code,
        message=message,
        data={"details": details} if details else None,
        request_id=_request_id(request),
    )
