"""
FastAPI exception handlers for KickpayError and request validation.

Catches KickpayError, looks up the registry, and returns a structured
JSON error response. Unknown codes get a safe fallback.
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from kickpay.core.errors import KickpayError
from kickpay.core.errors.registry import error_registry

logger = logging.getLogger(__name__)


def _envelope(code: str, error: dict) -> dict:
    return {"code": code, "error": error}


async def kickpay_error_handler(request: Request, exc: KickpayError) -> JSONResponse:
    """Convert KickpayError into a structured JSON response."""
    entry = error_registry.get(exc.code)

    if entry is None:
        # Code not in registry - log a warning, return generic 500
        logger.error(
            "unregistered_error_code",
            extra={"error.code": exc.code, "error.message": exc.detail},
        )
        return JSONResponse(
            status_code=500,
            content=_envelope(
                exc.code,
                {
                    "code": exc.code,
                    "title": "Internal error",
                    "message": "알 수 없는 오류가 발생했습니다.",
                    "retryable": False,
                    "user_action_required": False,
                    "remediation": [],
                },
            ),
        )

    log_extra = {
        "error.code": exc.code,
        "error.kind": type(exc).__name__,
        "error.message_safe": entry.safe_message,
        "error.message": exc.detail,
        "error.retryable": entry.retryable,
        "error.user_action_required": entry.user_action_required,
        **{f"error.ctx.{k}": v for k, v in exc.context.items()},
    }

    log_fn = _severity_to_log_fn(entry.severity)
    log_fn(entry.title, extra=log_extra)

    message = exc.detail if (entry.forward_detail and exc.detail) else entry.safe_message
    return JSONResponse(
        status_code=entry.http_status,
        content=_envelope(
            entry.code,
            {
                "code": entry.code,
                "title": entry.title,
                "message": message,
                "retryable": entry.retryable,
                "user_action_required": entry.user_action_required,
                "remediation": entry.remediation,
            },
        ),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render pydantic request validation failures as KPY-API-001."""
    fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
    detail = f"invalid fields: {', '.join(fields)}" if fields else None
    return await kickpay_error_handler(
        request,
        KickpayError(detail, code="KPY-API-001", context={"fields": fields}),
    )


def _severity_to_log_fn(severity: str):
    """Map registry severity to logger method."""
    return {
        "DEBUG": logger.debug,
        "INFO": logger.info,
        "WARN": logger.warning,
        "ERROR": logger.error,
        "CRITICAL": logger.critical,
    }.get(severity, logger.error)
