"""
End-user authentication
=======================

The app sends its session id as ``Authorization: Bearer <sessionId>``.
The accounts service authorizes the session and returns the user;
results are cached briefly by ``AccountsClient``.
"""

import logging
from typing import Optional

from fastapi import Depends, Request

from kickpay.container import ServiceContainer
from kickpay.core.errors import SessionRequired
from kickpay.dependencies import get_services
from kickpay.models.user import User

logger = logging.getLogger(__name__)


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


async def get_current_user(
    request: Request,
    services: ServiceContainer = Depends(get_services),
) -> User:
    """Resolve the calling user from the session bearer token."""
    session_id = bearer_token(request)
    if not session_id:
        raise SessionRequired("Authorization header is missing.")

    user = await services.accounts.authorize_session(session_id)
    request.state.user = user
    return user
