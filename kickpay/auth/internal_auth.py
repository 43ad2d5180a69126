"""
Internal service authentication
===============================

Other core services call ``/internal`` with an HS256 JWT, either as
``Authorization: Bearer <jwt>`` or as ``?token=<jwt>``.

Required claims:
    sub  "coreservice-payments"
    iss  calling service
    aud  operator e-mail address
    iat / exp, with exp - iat at most ``internal_token_max_lifetime_h``
"""

import logging
import re
from typing import Any, Dict

import jwt
from fastapi import Depends, Request

from kickpay.config import settings
from kickpay.container import ServiceContainer
from kickpay.core.errors import InternalTokenRequired
from kickpay.auth.session_auth import bearer_token
from kickpay.dependencies import get_services
from kickpay.models.user import User

logger = logging.getLogger(__name__)

INTERNAL_TOKEN_SUBJECT = "coreservice-payments"
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def verify_internal_token(token: str, secret: str, max_lifetime_h: int) -> Dict[str, Any]:
    """Decode and check an internal token. Raises InternalTokenRequired."""
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"verify_aud": False, "require": ["sub", "iss", "aud", "iat", "exp"]},
        )
    except jwt.InvalidTokenError as exc:
        logger.info("internal_token_rejected", extra={"reason": type(exc).__name__})
        raise InternalTokenRequired(str(exc)) from exc

    if claims["sub"] != INTERNAL_TOKEN_SUBJECT:
        raise InternalTokenRequired("unexpected token subject")
    if not claims["iss"]:
        raise InternalTokenRequired("token issuer is missing")
    audience = claims["aud"]
    if not isinstance(audience, str) or not _EMAIL_RE.match(audience):
        raise InternalTokenRequired("token audience must be an e-mail address")
    if claims["exp"] - claims["iat"] > max_lifetime_h * 3600:
        raise InternalTokenRequired(f"token lifetime exceeds {max_lifetime_h} hours")
    return claims


async def require_internal_token(request: Request) -> Dict[str, Any]:
    token = bearer_token(request) or request.query_params.get("token")
    if not token:
        raise InternalTokenRequired("internal token is missing")
    if not settings.internal_jwt_secret:
        logger.error("Internal API called but KICKPAY_INTERNAL_JWT_SECRET is not configured")
        raise InternalTokenRequired("internal authentication is not configured")

    claims = verify_internal_token(token, settings.internal_jwt_secret, settings.internal_token_max_lifetime_h)
    request.state.internal_claims = claims
    return claims


async def get_internal_user(
    user_id: str,
    services: ServiceContainer = Depends(get_services),
    _claims: Dict[str, Any] = Depends(require_internal_token),
) -> User:
    """User named by the ``{user_id}`` path segment of an internal route."""
    return await services.accounts.get_user(user_id)
