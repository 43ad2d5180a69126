"""Ride platform webhooks: ``POST /webhook/payment`` and ``POST /webhook/refund``."""

import logging

from fastapi import APIRouter, Depends

from kickpay.container import ServiceContainer
from kickpay.dependencies import get_services
from kickpay.models.schemas import RecordOut, RecordResponse, WebhookPayload

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/payment", response_model=RecordResponse)
async def on_payment(
    payload: WebhookPayload,
    services: ServiceContainer = Depends(get_services),
):
    """Record (and try to charge) a platform payment. Redeliveries are no-ops."""
    outcome = await services.webhooks.on_payment(payload)
    return RecordResponse(record=RecordOut.model_validate(outcome.record))


@router.post("/refund", response_model=RecordResponse)
async def on_refund(
    payload: WebhookPayload,
    services: ServiceContainer = Depends(get_services),
):
    record = await services.webhooks.on_refund(payload)
    return RecordResponse(record=RecordOut.model_validate(record))
