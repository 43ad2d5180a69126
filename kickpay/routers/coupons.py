"""
Coupon endpoints.

Users enroll coupons by code only; the internal mount can also enroll by
coupon group id and edit coupons.
"""

import logging
from typing import Callable

from fastapi import APIRouter, Depends

from kickpay.auth.session_auth import get_current_user
from kickpay.container import ServiceContainer
from kickpay.core.errors import ValidationError
from kickpay.dependencies import get_services
from kickpay.models.schemas import (
    CouponEnrollRequest,
    CouponListResponse,
    CouponModifyRequest,
    CouponOut,
    CouponQuery,
    CouponRedeemResponse,
    CouponResponse,
    OkResponse,
)
from kickpay.models.user import User
from kickpay.routers.params import coupon_query

logger = logging.getLogger(__name__)


def build_router(get_user: Callable, internal: bool = False) -> APIRouter:
    router = APIRouter()

    @router.get("", response_model=CouponListResponse)
    async def list_coupons(
        query: CouponQuery = Depends(coupon_query),
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        coupons, total = await services.coupons.get_coupons(user, query)
        return CouponListResponse(coupons=[CouponOut.model_validate(c) for c in coupons], total=total)

    @router.post("", response_model=CouponResponse)
    async def enroll_coupon(
        body: CouponEnrollRequest,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        if body.code:
            coupon = await services.coupons.enroll_by_code(user, body.code)
        elif internal:
            coupon = await services.coupons.enroll_by_group_id(user, body.coupon_group_id)
        else:
            raise ValidationError("invalid fields: code", context={"fields": ["code"]})
        return CouponResponse(coupon=CouponOut.model_validate(coupon))

    @router.get("/{coupon_id}", response_model=CouponResponse)
    async def get_coupon(
        coupon_id: str,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        coupon = await services.coupons.get_coupon(user, coupon_id, with_group=True)
        return CouponResponse(coupon=CouponOut.model_validate(coupon))

    @router.get("/{coupon_id}/redeem", response_model=CouponRedeemResponse)
    async def redeem_coupon(
        coupon_id: str,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        coupon = await services.coupons.get_coupon(user, coupon_id, with_group=True)
        coupon, properties = await services.coupons.redeem(coupon)
        return CouponRedeemResponse(coupon=CouponOut.model_validate(coupon), properties=properties)

    @router.delete("/{coupon_id}", response_model=OkResponse)
    async def delete_coupon(
        coupon_id: str,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        coupon = await services.coupons.get_coupon(user, coupon_id)
        await services.coupons.delete_coupon(coupon)
        return OkResponse()

    if not internal:
        return router

    @router.post("/{coupon_id}", response_model=CouponResponse)
    async def modify_coupon(
        coupon_id: str,
        body: CouponModifyRequest,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        coupon = await services.coupons.get_coupon(user, coupon_id)
        coupon = await services.coupons.modify_coupon(coupon, body)
        return CouponResponse(coupon=CouponOut.model_validate(coupon))

    return router


router = build_router(get_current_user)
