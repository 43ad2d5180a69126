"""Coupon group administration (internal only)."""

import logging

from fastapi import APIRouter, Depends

from kickpay.container import ServiceContainer
from kickpay.dependencies import get_services
from kickpay.models.schemas import (
    CouponGroupCreateRequest,
    CouponGroupListResponse,
    CouponGroupModifyRequest,
    CouponGroupOut,
    CouponGroupQuery,
    CouponGroupResponse,
    OkResponse,
)
from kickpay.routers.params import coupon_group_query

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=CouponGroupListResponse)
async def list_coupon_groups(
    query: CouponGroupQuery = Depends(coupon_group_query),
    services: ServiceContainer = Depends(get_services),
):
    groups, total = await services.coupon_groups.list(query)
    return CouponGroupListResponse(coupon_groups=[CouponGroupOut.model_validate(g) for g in groups], total=total)


@router.post("", response_model=CouponGroupResponse)
async def create_coupon_group(
    body: CouponGroupCreateRequest,
    services: ServiceContainer = Depends(get_services),
):
    group = await services.coupon_groups.create(body)
    return CouponGroupResponse(coupon_group=CouponGroupOut.model_validate(group))


@router.get("/{coupon_group_id}", response_model=CouponGroupResponse)
async def get_coupon_group(
    coupon_group_id: str,
    services: ServiceContainer = Depends(get_services),
):
    group = await services.coupon_groups.get(coupon_group_id)
    return CouponGroupResponse(coupon_group=CouponGroupOut.model_validate(group))


@router.post("/{coupon_group_id}", response_model=CouponGroupResponse)
async def modify_coupon_group(
    coupon_group_id: str,
    body: CouponGroupModifyRequest,
    services: ServiceContainer = Depends(get_services),
):
    group = await services.coupon_groups.get(coupon_group_id)
    group = await services.coupon_groups.modify(group, body)
    return CouponGroupResponse(coupon_group=CouponGroupOut.model_validate(group))


@router.delete("/{coupon_group_id}", response_model=OkResponse)
async def delete_coupon_group(
    coupon_group_id: str,
    services: ServiceContainer = Depends(get_services),
):
    """Deletes the group and every coupon issued from it."""
    group = await services.coupon_groups.get(coupon_group_id)
    await services.coupon_groups.delete(group)
    return OkResponse()
