"""
Record endpoints.

``/records`` lets the signed-in user browse and settle their own records.
The internal mount additionally creates records (create then pay) and
refunds them.
"""

import logging
from typing import Callable

from fastapi import APIRouter, Depends

from kickpay.auth.session_auth import get_current_user
from kickpay.container import ServiceContainer
from kickpay.dependencies import get_services
from kickpay.models.schemas import (
    RecordCreateRequest,
    RecordListResponse,
    RecordOut,
    RecordQuery,
    RecordResponse,
    RefundRequest,
)
from kickpay.models.user import User
from kickpay.routers.params import record_query

logger = logging.getLogger(__name__)


def build_router(get_user: Callable, internal: bool = False) -> APIRouter:
    router = APIRouter()

    @router.get("", response_model=RecordListResponse)
    async def list_records(
        query: RecordQuery = Depends(record_query),
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        records, total = await services.records.get_records(query, user)
        return RecordListResponse(records=[RecordOut.model_validate(r) for r in records], total=total)

    @router.get("/unpaid", response_model=RecordListResponse)
    async def list_unpaid_records(
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        records = await services.records.get_unpaid_records(user)
        return RecordListResponse(records=[RecordOut.model_validate(r) for r in records], total=len(records))

    @router.get("/{record_id}", response_model=RecordResponse)
    async def get_record(
        record_id: str,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        record = await services.records.get_record(record_id, user)
        return RecordResponse(record=RecordOut.model_validate(record))

    @router.get("/{record_id}/retry", response_model=RecordResponse)
    async def retry_record(
        record_id: str,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        record = await services.records.get_record(record_id, user)
        record = await services.records.retry_payment(user, record)
        return RecordResponse(record=RecordOut.model_validate(record))

    if not internal:
        return router

    @router.post("", response_model=RecordResponse)
    async def create_record(
        body: RecordCreateRequest,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        """Create a record and charge it right away."""
        record = await services.records.create_then_pay(
            user,
            amount=body.amount,
            name=body.name,
            display_name=body.display_name,
            description=body.description,
            properties=body.properties,
            payment_key_id=body.payment_key_id,
            card_id=body.card_id,
            required=body.required,
        )
        return RecordResponse(record=RecordOut.model_validate(record))

    @router.post("/{record_id}/refund", response_model=RecordResponse)
    async def refund_record(
        record_id: str,
        body: RefundRequest,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        record = await services.records.get_record(record_id, user)
        record = await services.records.refund_record(record, reason=body.reason, amount=body.amount)
        await services.records.report_ride_price(record)
        return RecordResponse(record=RecordOut.model_validate(record))

    return router


router = build_router(get_current_user)
