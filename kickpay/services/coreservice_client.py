"""
Core Service Clients
====================

PURPOSE:
    Thin httpx clients for the collaborators around the payment service.

CLIENTS:
    AccountsClient  → {accounts_url}/internal  (users, session authorization)
    RideClient      → {ride_url}               (ride lookup, price updates)
    PlatformClient  → {platform_url}           (payment process callbacks, discounts)

AUTH:
    Accounts calls carry a short-lived HS256 bearer token minted here
    (sub "coreservice-accounts", 1 hour, reused until it expires).
    Platform calls carry the configured access key.

Collaborators answer ``{"opcode": ..., <payload>}`` and, on failure,
``{"opcode": ..., "message": ...}``. Failures raise CoreServiceError (or
the more specific error passed by the caller) with that message.
"""

import logging
import time
from typing import Any, Dict, Optional, Type

import httpx
import jwt
from cachetools import TTLCache

from kickpay.core.errors import (
    CoreServiceError,
    DiscountProviderError,
    KickpayError,
    SessionRequired,
    UserNotFound,
)
from kickpay.models.user import User

logger = logging.getLogger(__name__)

ACCOUNTS_TOKEN_SUBJECT = "coreservice-accounts"
ACCOUNTS_TOKEN_AUDIENCE = "system@hikick.kr"
ACCOUNTS_TOKEN_LIFETIME_S = 3600
_TOKEN_REFRESH_MARGIN_S = 30


class _CoreServiceClient:
    """Shared request/error handling for core service collaborators."""

    service_name = "coreservice"

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    def _headers(self) -> Dict[str, str]:
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        error_cls: Type[KickpayError] = CoreServiceError,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """Make a request and return the JSON body, raising error_cls on failure."""
        try:
            response = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("Timeout calling %s %s %s: %s", self.service_name, method, path, exc)
            raise CoreServiceError(
                f"{self.service_name} request timed out",
                context={"service": self.service_name, "path": path},
            ) from exc
        except httpx.RequestError as exc:
            logger.error("Connection error to %s %s %s: %s", self.service_name, method, path, exc)
            raise CoreServiceError(
                f"cannot reach {self.service_name}",
                context={"service": self.service_name, "path": path},
            ) from exc

        if response.status_code >= 400:
            message = response.text
            opcode = None
            try:
                body = response.json()
                message = body.get("message", message)
                opcode = body.get("opcode")
            except ValueError:
                pass
            logger.warning(
                "%s %s %s returned %d: %s",
                self.service_name, method, path, response.status_code, message,
            )
            raise error_cls(
                message,
                context={
                    "service": self.service_name,
                    "path": path,
                    "status_code": response.status_code,
                    "opcode": opcode,
                },
            )

        try:
            return response.json()
        except ValueError:
            return {}


class AccountsClient(_CoreServiceClient):
    service_name = "accounts"

    def __init__(
        self,
        client: httpx.AsyncClient,
        secret_key: Optional[str],
        issuer: str,
        audience: str = ACCOUNTS_TOKEN_AUDIENCE,
        session_cache_ttl: int = 30,
    ):
        super().__init__(client)
        self._secret_key = secret_key
        self._issuer = issuer
        self._audience = audience
        self._token: Optional[str] = None
        self._token_exp: float = 0
        # Authorized sessions, keyed by session id
        self._sessions: TTLCache = TTLCache(maxsize=1000, ttl=session_cache_ttl)

    def access_token(self) -> str:
        """Return the bearer token, minting a new one when it is about to expire."""
        now = time.time()
        if self._token and self._token_exp - _TOKEN_REFRESH_MARGIN_S > now:
            return self._token
        if not self._secret_key:
            raise CoreServiceError("accounts service credentials are not configured")

        exp = int(now) + ACCOUNTS_TOKEN_LIFETIME_S
        self._token = jwt.encode(
            {
                "sub": ACCOUNTS_TOKEN_SUBJECT,
                "iss": self._issuer,
                "aud": self._audience,
                "iat": int(now),
                "exp": exp,
            },
            self._secret_key,
            algorithm="HS256",
        )
        self._token_exp = exp
        return self._token

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token()}"}

    async def get_user(self, user_id: str) -> User:
        body = await self._request("GET", f"users/{user_id}", error_cls=UserNotFound)
        user = body.get("user")
        if not user:
            raise UserNotFound(context={"user_id": user_id})
        return User.model_validate(user)

    async def authorize_session(self, session_id: str) -> User:
        cached = self._sessions.get(session_id)
        if cached is not None:
            return cached

        body = await self._request(
            "POST",
            "users/authorize",
            error_cls=SessionRequired,
            json={"sessionId": session_id},
        )
        user = body.get("user")
        if not user:
            raise SessionRequired("accounts service returned no user")
        resolved = User.model_validate(user)
        self._sessions[session_id] = resolved
        return resolved


class RideClient(_CoreServiceClient):
    service_name = "ride"

    async def get_ride_by_openapi_ride_id(self, openapi_ride_id: str) -> Dict[str, Any]:
        body = await self._request("GET", f"rides/byOpenAPI/{openapi_ride_id}")
        return body.get("ride") or {}

    async def modify_ride(self, ride_id: str, **changes: Any) -> Dict[str, Any]:
        body = await self._request("POST", f"rides/{ride_id}", json=changes)
        return body.get("ride") or {}


class PlatformClient(_CoreServiceClient):
    service_name = "platform"

    def __init__(self, client: httpx.AsyncClient, access_key: Optional[str] = None):
        super().__init__(client)
        self._access_key = access_key

    def _headers(self) -> Dict[str, str]:
        if not self._access_key:
            return {}
        return {"Authorization": f"Bearer {self._access_key}"}

    async def mark_payment_processed(self, ride_id: str, payment_id: str) -> None:
        await self._request("GET", f"ride/rides/{ride_id}/payments/{payment_id}/process")

    async def get_discount_group(self, discount_group_id: str) -> Dict[str, Any]:
        body = await self._request(
            "GET",
            f"discount/discountGroups/{discount_group_id}",
            error_cls=DiscountProviderError,
        )
        return body.get("discountGroup") or {}

    async def generate_discount(self, discount_group_id: str) -> Dict[str, Any]:
        """Issue a fresh discount from a discount group (``discountId``, ``expiredAt``)."""
        body = await self._request(
            "GET",
            f"discount/discountGroups/{discount_group_id}/generate",
            error_cls=DiscountProviderError,
        )
        discount = body.get("discount")
        if not discount or not discount.get("discountId"):
            raise DiscountProviderError(
                "platform returned no discount",
                context={"discount_group_id": discount_group_id},
            )
        return discount
