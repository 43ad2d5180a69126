"""
Card endpoints.

Mounted twice: ``/cards`` for the signed-in user and
``/internal/users/{user_id}/cards`` for other services. Billing tokens
never leave the service through either surface.
"""

import logging
from typing import Callable

from fastapi import APIRouter, Depends

from kickpay.auth.session_auth import get_current_user
from kickpay.container import ServiceContainer
from kickpay.dependencies import get_services
from kickpay.models.schemas import (
    CardListResponse,
    CardRegisterRequest,
    CardReorderRequest,
    CardResponse,
)
from kickpay.models.user import User

logger = logging.getLogger(__name__)


def build_router(get_user: Callable) -> APIRouter:
    router = APIRouter()

    @router.get("", response_model=CardListResponse)
    async def list_cards(
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        return CardListResponse(cards=await services.cards.list(user))

    @router.post("", response_model=CardResponse)
    async def register_card(
        body: CardRegisterRequest,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        return CardResponse(card=await services.cards.register(user, body))

    @router.post("/orderBy", response_model=CardListResponse)
    async def reorder_cards(
        body: CardReorderRequest,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        return CardListResponse(cards=await services.cards.reorder(user, body.card_ids))

    @router.get("/{card_id}", response_model=CardResponse)
    async def get_card(
        card_id: str,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        return CardResponse(card=await services.cards.get(user, card_id))

    @router.delete("/{card_id}", response_model=CardResponse)
    async def revoke_card(
        card_id: str,
        user: User = Depends(get_user),
        services: ServiceContainer = Depends(get_services),
    ):
        """Revoke a card. Refused while the user has unpaid records."""
        await services.cards.get(user, card_id)
        await services.cards.check_ready(user)
        return CardResponse(card=await services.cards.revoke(user, card_id))

    return router


router = build_router(get_current_user)
