"""
Internal API for other core services.

Every route requires an internal token. Per-user routes resolve the user
named in the path through the accounts service.

    /internal/users/{user_id}/cards
    /internal/users/{user_id}/coupons
    /internal/users/{user_id}/records
    /internal/users/{user_id}/ready
    /internal/couponGroups
    /internal/direct/generate | /internal/direct/invoke
"""

import logging

from fastapi import APIRouter, Depends

from kickpay.auth.internal_auth import get_internal_user, require_internal_token
from kickpay.container import ServiceContainer
from kickpay.dependencies import get_services
from kickpay.models.schemas import OkResponse
from kickpay.models.user import User
from kickpay.routers import cards, coupon_groups, coupons, direct, records

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_internal_token)])

router.include_router(cards.build_router(get_internal_user), prefix="/users/{user_id}/cards")
router.include_router(coupons.build_router(get_internal_user, internal=True), prefix="/users/{user_id}/coupons")
router.include_router(records.build_router(get_internal_user, internal=True), prefix="/users/{user_id}/records")
router.include_router(coupon_groups.router, prefix="/couponGroups")
router.include_router(direct.router, prefix="/direct")


@router.get("/users/{user_id}/ready", response_model=OkResponse)
async def check_ready(
    user: User = Depends(get_internal_user),
    services: ServiceContainer = Depends(get_services),
):
    """Ride-start precondition: at least one card and no unpaid record."""
    await services.cards.check_ready(user)
    return OkResponse()
