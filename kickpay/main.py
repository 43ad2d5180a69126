from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import asyncio
import os

from kickpay.config import settings
from kickpay.container import ServiceContainer
from kickpay.routers import cards, coupons, health, internal, records, webhooks
from kickpay.core.database import init_db, close_db
from kickpay.core.structured_logging import APP_VERSION, setup_logging
from kickpay.core.errors import KickpayError
from kickpay.core.errors.registry import error_registry
from kickpay.core.errors.middleware import kickpay_error_handler, validation_error_handler
from kickpay.core.log_middleware import CorrelationMiddleware
from kickpay.core.issue_tracker import IssueTracker

# Initialize structured logging before any logger calls
setup_logging(log_dir=settings.log_directory, log_level=logging.DEBUG if settings.debug else logging.INFO)

logger = logging.getLogger(__name__)

API_TITLE = "kickpay API"
API_DESCRIPTION = """
## kickpay - Kickboard Payments

Stored cards, ride billing with card fallback, refunds, unpaid-debt
collection and discount coupons.

### Surfaces
- `/cards`, `/records`, `/coupons` - end users (`Authorization: Bearer <sessionId>`)
- `/internal/...` - core services (HS256 internal token)
- `/webhook/payment`, `/webhook/refund` - ride platform events
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting kickpay API v%s in %s mode...", APP_VERSION, settings.environment)

    error_registry.load()
    issue_tracker = IssueTracker(persist_path=os.path.join(settings.log_directory, "issues.json"))
    issue_tracker.reload()

    init_db()
    services = ServiceContainer(settings, issue_tracker)
    app.state.services = services

    scheduler_task = None
    if settings.unpaid_scheduler_enabled:
        scheduler_task = asyncio.create_task(services.scheduler.run_loop(settings.unpaid_scheduler_interval_s))
        logger.info("Unpaid scheduler started (every %ss)", settings.unpaid_scheduler_interval_s)

    yield

    # Shutdown
    logger.info("Shutting down kickpay API...")

    if scheduler_task is not None:
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            logger.info("Unpaid scheduler cancelled")

    issue_tracker.persist()
    await services.aclose()
    close_db()
    logger.info("Database connection closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=APP_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (request_id + correlation_id in every log)
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(KickpayError, kickpay_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Catch-all handler so unhandled exceptions return JSON (not bare text)
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "code": "KPY-SYS-001",
                "error": {
                    "code": "KPY-SYS-001",
                    "title": "Internal error",
                    "message": "An unexpected error occurred.",
                    "retryable": False,
                    "user_action_required": False,
                    "remediation": None,
                },
            },
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(cards.router, prefix="/cards", tags=["cards"])
    app.include_router(records.router, prefix="/records", tags=["records"])
    app.include_router(coupons.router, prefix="/coupons", tags=["coupons"])
    app.include_router(webhooks.router, prefix="/webhook", tags=["webhooks"])
    app.include_router(internal.router, prefix="/internal", tags=["internal"])

    return app


app = create_app()
