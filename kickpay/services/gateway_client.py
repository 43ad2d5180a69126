"""
Card Billing Gateway Client
===========================

PURPOSE:
    Wraps the card billing provider's form-encoded HTTP API.

ENDPOINTS:
    POST gen_billkey     → tokenize a card into a billing token
    POST payments_token  → charge a billing token
    POST cancel          → refund (full or partial) a transaction
    POST del_billkey     → revoke a billing token

RESULT CODES:
    "0000" is success for tokenize/charge/revoke. Refunds succeed with
    "2001" or "2013"; older merchant contracts answer "0000". Any other code
    raises PaymentProviderError carrying the provider's ``result_msg``
    verbatim.

Inputs are validated with pydantic before any network call. There is no
retry here; retrying is the record engine's concern.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from kickpay.core.errors import PaymentProviderError, UpstreamError, ValidationError
from kickpay.models.payment_key import PaymentKey
from kickpay.services.payment_key_service import PaymentKeyService

logger = logging.getLogger(__name__)

SUCCESS_CODE = "0000"
REFUND_SUCCESS_CODES = frozenset({"2001", "2013"})
LEGACY_REFUND_SUCCESS_CODES = frozenset({SUCCESS_CODE})


@dataclass(frozen=True)
class BillingToken:
    token: str
    card_label: str


class _TokenizeInput(BaseModel):
    card_number: str = Field(..., pattern=r"^\d{16}$")
    expiry: str = Field(..., min_length=4)
    password: str = Field(..., pattern=r"^\d{2}$")
    birthday: str = Field(..., pattern=r"^\d{6}(\d{4})?$")


class _ChargeInput(BaseModel):
    token: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    payer_name: str = ""
    payer_phone: str = ""
    product_name: str = ""


class _RefundInput(BaseModel):
    tid: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    reason: str = ""
    is_partial: bool


class _RevokeInput(BaseModel):
    token: str = Field(..., min_length=1)


def _validate(model: type, **values: Any) -> Any:
    try:
        return model(**values)
    except PydanticValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        raise ValidationError(
            f"invalid fields: {', '.join(fields)}",
            context={"fields": fields},
        ) from exc


def format_expiry(expiry: str) -> str:
    """Normalize a card expiry to YYMM.

    Accepts YYMM, MM/YY, YYYY-MM and YYYY-MM-DD.
    """
    value = expiry.strip()
    if re.fullmatch(r"\d{4}", value):
        return value
    match = re.fullmatch(r"(\d{2})/(\d{2})", value)
    if match:
        month, year = match.groups()
        return f"{year}{month}"
    for fmt in ("%Y-%m", "%Y-%m-%d"):
        try:
            return datetime.strptime(value, fmt).strftime("%y%m")
        except ValueError:
            continue
    raise ValidationError("invalid fields: expiry", context={"fields": ["expiry"]})


class PaymentGateway:
    """
    Client for the card billing provider.

    The httpx client is owned by the application lifespan and injected here.
    Every operation takes an optional merchant key and falls back to the
    primary one.
    """

    def __init__(self, client: httpx.AsyncClient, payment_keys: PaymentKeyService):
        self._client = client
        self._payment_keys = payment_keys

    async def _post(self, path: str, form: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, data=form)
        except httpx.TimeoutException as exc:
            logger.error("Timeout calling gateway %s: %s", path, exc)
            raise UpstreamError("gateway request timed out", context={"path": path}) from exc
        except httpx.RequestError as exc:
            logger.error("Connection error to gateway %s: %s", path, exc)
            raise UpstreamError("cannot reach gateway", context={"path": path}) from exc

        if response.status_code >= 400:
            logger.error("gateway %s returned %d", path, response.status_code)
            raise UpstreamError(
                f"gateway returned {response.status_code}",
                context={"path": path, "status_code": response.status_code},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError("gateway returned a non-JSON body", context={"path": path}) from exc

    @staticmethod
    def _raise_for_result(path: str, body: Dict[str, Any], accepted: frozenset) -> None:
        result_code = str(body.get("result_cd", ""))
        if result_code in accepted:
            return
        message = body.get("result_msg") or "결제 제공자가 요청을 거절했습니다."
        logger.warning(
            "gateway_rejected",
            extra={"path": path, "result_code": result_code, "result_msg": message},
        )
        raise PaymentProviderError(message, result_code=result_code, context={"path": path})

    async def _merchant(self, payment_key: Optional[PaymentKey]) -> PaymentKey:
        if payment_key is not None:
            return payment_key
        return await self._payment_keys.get_primary_payment_key()

    async def create_billing_token(
        self,
        card_number: str,
        expiry: str,
        password: str,
        birthday: str,
        payment_key: Optional[PaymentKey] = None,
    ) -> BillingToken:
        """Tokenize a card. The label is ``"{card_name} {masked card_num}"``."""
        data = _validate(
            _TokenizeInput,
            card_number=card_number,
            expiry=expiry,
            password=password,
            birthday=birthday,
        )
        card_exp = format_expiry(data.expiry)
        merchant = await self._merchant(payment_key)

        body = await self._post(
            "gen_billkey",
            {
                "mid": merchant.identity,
                "api_key": merchant.secret_key,
                "card_num": data.card_number,
                "card_exp": card_exp,
                "card_pwd": data.password,
                "buyer_auth_num": data.birthday,
            },
        )
        self._raise_for_result("gen_billkey", body, frozenset({SUCCESS_CODE}))
        return BillingToken(
            token=body["card_token"],
            card_label=f"{body.get('card_name', '')} {body.get('card_num', '')}".strip(),
        )

    async def charge(
        self,
        token: str,
        amount: int,
        payer_name: str,
        payer_phone: str,
        payment_key: Optional[PaymentKey] = None,
        product_name: str = "",
    ) -> str:
        """Charge a billing token and return the gateway transaction id.

        The primary key is the master merchant; ``payment_key`` (defaulting
        to the primary) is the sub-merchant the charge settles to.
        """
        data = _validate(
            _ChargeInput,
            token=token,
            amount=amount,
            payer_name=payer_name or "",
            payer_phone=payer_phone or "",
            product_name=product_name or "",
        )
        primary = await self._payment_keys.get_primary_payment_key()
        sub_merchant = payment_key or primary

        body = await self._post(
            "payments_token",
            {
                "mid": primary.identity,
                "api_key": primary.secret_key,
                "sub_mid": sub_merchant.identity,
                "sub_mid_key": sub_merchant.secret_key,
                "goods_nm": data.product_name,
                "card_token": data.token,
                "amt": data.amount,
                "buyer_name": data.payer_name,
                "buyer_tel": data.payer_phone,
            },
        )
        self._raise_for_result("payments_token", body, frozenset({SUCCESS_CODE}))
        return body["tid"]

    async def refund(
        self,
        tid: str,
        amount: int,
        reason: Optional[str],
        payment_key: Optional[PaymentKey] = None,
        is_partial: bool = False,
    ) -> None:
        data = _validate(_RefundInput, tid=tid, amount=amount, reason=reason or "", is_partial=is_partial)
        merchant = await self._merchant(payment_key)

        body = await self._post(
            "cancel",
            {
                "mid": merchant.identity,
                "api_key": merchant.secret_key,
                "tid": data.tid,
                "cancel_amt": data.amount,
                "cancel_msg": data.reason,
                "partial_cancel": 1 if data.is_partial else 0,
            },
        )
        self._raise_for_result("cancel", body, REFUND_SUCCESS_CODES | LEGACY_REFUND_SUCCESS_CODES)

    async def revoke_token(self, token: str, payment_key: Optional[PaymentKey] = None) -> None:
        data = _validate(_RevokeInput, token=token)
        merchant = await self._merchant(payment_key)

        body = await self._post(
            "del_billkey",
            {
                "mid": merchant.identity,
                "api_key": merchant.secret_key,
                "card_token": data.token,
            },
        )
        self._raise_for_result("del_billkey", body, frozenset({SUCCESS_CODE}))
