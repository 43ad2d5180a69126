"""
Health check endpoints.

- GET /               - service banner
- GET /health         - cheap: process alive, version, uptime
- GET /health/deep    - database round trip (2s timeout); internal token
- GET /health/issues  - recent captured issues; internal token
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text

from kickpay.auth.internal_auth import require_internal_token
from kickpay.container import ServiceContainer
from kickpay.core.async_utils import run_sync
from kickpay.core.structured_logging import APP_VERSION, SERVICE_NAME, get_uptime_s
from kickpay.dependencies import get_services
from kickpay.models.schemas import SUCCESS_CODE

logger = logging.getLogger(__name__)

router = APIRouter()

COMPONENT_TIMEOUT = 2.0  # seconds


@router.get("/")
async def index():
    return {"code": SUCCESS_CODE, "service": SERVICE_NAME, "version": APP_VERSION}


@router.get("/health")
async def health_check():
    """Cheap health check - no network calls."""
    return {
        "code": SUCCESS_CODE,
        "status": "ok",
        "version": APP_VERSION,
        "service": SERVICE_NAME,
        "uptime_s": round(get_uptime_s(), 1),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/deep")
async def deep_health_check(
    services: ServiceContainer = Depends(get_services),
    _claims: Dict[str, Any] = Depends(require_internal_token),
):
    """Database round trip, bounded by COMPONENT_TIMEOUT."""
    database = await _bounded_check("database", _check_database(services))
    return {
        "code": SUCCESS_CODE,
        "status": database["status"],
        "checked_at": datetime.now(timezone.utc).isoformat(),
        "version": APP_VERSION,
        "uptime_s": round(get_uptime_s(), 1),
        "components": {"database": database},
    }


@router.get("/health/issues")
async def active_issues(
    services: ServiceContainer = Depends(get_services),
    _claims: Dict[str, Any] = Depends(require_internal_token),
):
    return {"code": SUCCESS_CODE, "issues": services.issue_tracker.get_active_issues()}


async def _bounded_check(name: str, coro) -> dict:
    try:
        return await asyncio.wait_for(coro, timeout=COMPONENT_TIMEOUT)
    except asyncio.TimeoutError:
        return {"status": "down", "detail_safe": "Health check timed out"}
    except Exception as e:
        logger.warning("health_check_error", extra={"component": name, "error": str(e)})
        return {"status": "down", "detail_safe": f"Check failed: {type(e).__name__}"}


async def _check_database(services: ServiceContainer) -> dict:
    """SELECT 1 through a fresh session."""
    start = time.perf_counter()

    def ping() -> Any:
        with services.session_factory() as session:
            return session.connection().execute(text("SELECT 1")).first()

    row = await run_sync(ping)
    latency_ms = round((time.perf_counter() - start) * 1000, 1)
    if not row or row[0] != 1:
        return {"status": "down", "latency_ms": latency_ms, "detail_safe": "Unexpected result"}
    return {"status": "ok" if latency_ms <= 250 else "degraded", "latency_ms": latency_ms}
