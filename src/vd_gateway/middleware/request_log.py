"""Per-request access log and request id propagation.

Customer and partner servers may send their own `x-request-id`; it is kept
so a webhook or dispatch problem can be traced across both systems. Otherwise
a short id is minted. Either way the id lands on request.state for the
response envelope and is echoed back in the `x-request-id` header.

    INFO  [POST] /api/v1/orders/7301.../accept → 200 (23ms) req_a1b2c3d4e5f6
    WARN  [POST] /api/v1/external/vendor-update → 422 (4ms) partner-8812
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("vd.request")

_MAX_INBOUND_ID = 64


def _resolve_request_id(request: Request) -> str:
    inbound = request.headers.get("x-request-id", "").strip()
    if inbound and len(inbound) <= _MAX_INBOUND_ID:
        return inbound
    return f"req_{uuid.uuid4().hex[:12]}"


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _resolve_request_id(request)
        request.state.request_id = request_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers["x-request-id"] = request_id
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(
            level,
            "[%s] %s → %d (%.0fms) %s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request_id,
        )
        return response
