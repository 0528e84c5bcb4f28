"""
Per-request log context.

Every governed write is attributed to the host-supplied caller, so each
request binds its request id, caller and tenant into structlog's
contextvars. Log lines emitted anywhere below (detector, lifecycle,
recompute) then carry who asked and under which request.

An upstream ``X-Request-ID`` is kept; otherwise one is minted. Both the id
and the handling time are echoed on the response.
"""

import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            route=f"{request.method} {request.url.path}",
            actor_id=request.headers.get("X-Actor-Id"),
            organization_id=request.headers.get("X-Organization-Id"),
        )

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"

        log = logger.warning if response.status_code >= 500 else logger.info
        log("request_handled", status=response.status_code, duration_ms=duration_ms)
        return response
