"""
Last-resort failure handler for the HTTP surface.

Governance failures (validation, permission, conflict, blocked activation)
come back from the AssuranceService as typed results and leave the routers
as 4xx responses, so anything that lands here is a defect or an outage:
a broken dependency, a lost database, a bug. The client gets an opaque 500
carrying an ``error_id``; the full exception goes to the log under the same
id together with the request id bound by RequestContextMiddleware.
"""

import uuid

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from riskgov.config import settings

logger = structlog.get_logger(__name__)

GENERIC_MESSAGE = "The request could not be completed. Quote the error_id when reporting it."


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turns unexpected exceptions into ``{"error", "error_id", "status"}`` 500 bodies."""

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            error_id = uuid.uuid4().hex
            logger.error(
                "request_failed_unexpectedly",
                error_id=error_id,
                request_id=getattr(request.state, "request_id", None),
                route=f"{request.method} {request.url.path}",
                exc_type=type(exc).__name__,
                exc_info=exc,
            )

            content: dict = {"error": GENERIC_MESSAGE, "error_id": error_id, "status": 500}
            if settings.debug:
                content["exception"] = type(exc).__name__
            return JSONResponse(status_code=500, content=content)
