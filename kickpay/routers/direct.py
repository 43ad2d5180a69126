"""
Direct gateway access (internal only).

Tokenize a card or charge a billing token without creating cards or
records. Used by services that keep their own ledgers.
"""

import logging

from fastapi import APIRouter, Depends

from kickpay.container import ServiceContainer
from kickpay.dependencies import get_services
from kickpay.models.schemas import BillingKeyResponse, CardRegisterRequest, DirectInvokeRequest, TidResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generate", response_model=BillingKeyResponse)
async def generate_billing_key(
    body: CardRegisterRequest,
    services: ServiceContainer = Depends(get_services),
):
    billing = await services.gateway.create_billing_token(
        card_number=body.card_number,
        expiry=body.expiry,
        password=body.password,
        birthday=body.birthday,
    )
    return BillingKeyResponse(billing_key=billing.token, card_name=billing.card_label)


@router.post("/invoke", response_model=TidResponse)
async def invoke_billing(
    body: DirectInvokeRequest,
    services: ServiceContainer = Depends(get_services),
):
    payment_key = await services.payment_keys.resolve(body.payment_key_id)
    tid = await services.gateway.charge(
        body.billing_key,
        body.amount,
        payer_name=body.realname,
        payer_phone=body.phone,
        payment_key=payment_key,
        product_name=body.product_name,
    )
    logger.info("direct_charge_completed", extra={"amount": body.amount, "payment_key_id": payment_key.payment_key_id})
    return TidResponse(tid=tid)
