"""
riskgov — FastAPI Application.

Run: uvicorn riskgov.main:app --host 0.0.0.0 --port 8010 --reload

The HTTP surface is thin: every route calls the AssuranceService and
translates its typed result into a response.
"""

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from riskgov.api.routers.breaches import router as breaches_router
from riskgov.api.routers.controls import router as controls_router
from riskgov.api.routers.risks import router as risks_router
from riskgov.api.routers.tolerance import router as tolerance_router
from riskgov.config import settings
from riskgov.controls.library import control_library
from riskgov.db.engine import close_db, get_db_session, init_db
from riskgov.middleware.error_handler import ErrorHandlerMiddleware
from riskgov.middleware.request_context import RequestContextMiddleware


def configure_logging() -> None:
    """Install the structlog processor chain; JSON or console by LOG_FORMAT."""
    logging.basicConfig(format="%(message)s", level=settings.log_level.upper())
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    logger.info("riskgov_starting", version=settings.app_version, environment=settings.environment)
    await init_db()
    if settings.environment.lower() == "development":
        async with get_db_session() as session:
            await control_library.seed(session)
    yield
    await close_db()
    logger.info("riskgov_shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="riskgov",
        description=(
            "Control assurance and tolerance breach engine.\n\n"
            "- **Controls**: templates → instances → attestations → DIME + confidence\n"
            "- **Tolerances**: series → measurements → metrics → breach detection\n"
            "- **Breaches**: governed lifecycle with board-accepted exceptions\n"
            "- **Risks**: treatment response and activation gate\n\n"
            "Actor context is supplied by the host platform via `X-Actor-Id`, "
            "`X-Organization-Id` and `X-Actor-Role` headers."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness probe"},
            {"name": "controls", "description": "Control instances, attestations, evidence, scores"},
            {"name": "tolerance", "description": "Series, measurements and tolerance metrics"},
            {"name": "breaches", "description": "Breach detection and lifecycle"},
            {"name": "risks", "description": "Risk response and activation gate"},
        ],
    )

    # ── Middleware (last added = outermost) ──
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)

    # ── Routes ──
    app.include_router(controls_router)
    app.include_router(tolerance_router)
    app.include_router(breaches_router)
    app.include_router(risks_router)

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness probe. Does NOT check dependencies."""
        return {
            "status": "ok",
            "version": settings.app_version,
            "service": "riskgov",
        }

    return app


configure_logging()
app = create_app()
