"""
Service wiring.

Builds the HTTP clients and every service from ``Settings``. The
application lifespan owns one container; routers reach it through
``request.app.state.services``.
"""

import logging
from typing import Callable, List, Optional

import httpx

from kickpay.config import Settings
from kickpay.core.database import get_session_context
from kickpay.core.issue_tracker import IssueTracker
from kickpay.services.card_service import CardService
from kickpay.services.coreservice_client import AccountsClient, PlatformClient, RideClient
from kickpay.services.coupon_group_service import CouponGroupService
from kickpay.services.coupon_service import CouponService
from kickpay.services.dunning_service import DunningService
from kickpay.services.gateway_client import PaymentGateway
from kickpay.services.message_gateway import MessageGateway
from kickpay.services.payment_key_service import PaymentKeyService
from kickpay.services.record_service import RecordService
from kickpay.services.unpaid_scheduler import UnpaidScheduler
from kickpay.services.webhook_service import WebhookReconciler

logger = logging.getLogger(__name__)


def _base_url(url: Optional[str]) -> str:
    """httpx joins relative paths onto the base only when it ends with a slash."""
    if not url:
        return ""
    return url if url.endswith("/") else f"{url}/"


class ServiceContainer:
    def __init__(
        self,
        settings: Settings,
        issue_tracker: IssueTracker,
        session_factory: Callable = get_session_context,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.issue_tracker = issue_tracker
        self.session_factory = session_factory
        self._clients: List[httpx.AsyncClient] = []

        def client(url: Optional[str], timeout: float) -> httpx.AsyncClient:
            c = httpx.AsyncClient(base_url=_base_url(url), timeout=timeout, transport=transport)
            self._clients.append(c)
            return c

        core_timeout = settings.core_timeout_s
        self.payment_keys = PaymentKeyService(session_factory)
        self.gateway = PaymentGateway(client(settings.gateway_base_url, settings.gateway_timeout_s), self.payment_keys)
        self.accounts = AccountsClient(
            client(f"{settings.accounts_url}/internal" if settings.accounts_url else None, core_timeout),
            secret_key=settings.accounts_key,
            issuer=settings.service_url,
        )
        self.rides = RideClient(client(settings.ride_url, core_timeout))
        self.platform = PlatformClient(client(settings.platform_url, core_timeout), settings.platform_access_key)
        self.messages = MessageGateway(
            client(settings.message_gateway_url, core_timeout) if settings.message_gateway_url else None,
            settings.message_gateway_key,
        )

        self.cards = CardService(
            session_factory,
            self.gateway,
            secret_key=settings.get_secret_key(),
            previous_secret_key=settings.previous_secret_key,
        )
        self.records = RecordService(
            session_factory,
            self.gateway,
            self.payment_keys,
            self.cards,
            platform=self.platform,
            rides=self.rides,
        )
        self.dunnings = DunningService(session_factory)
        self.coupon_groups = CouponGroupService(session_factory, self.platform)
        self.coupons = CouponService(session_factory, self.coupon_groups)
        self.webhooks = WebhookReconciler(self.records, self.payment_keys, self.accounts, self.messages)
        self.scheduler = UnpaidScheduler(
            self.records,
            self.cards,
            self.dunnings,
            self.accounts,
            self.messages,
            issue_tracker,
            page_size=settings.unpaid_page_size,
            message_interval_days=settings.dunning_message_interval_days,
        )

    async def aclose(self) -> None:
        for c in self._clients:
            await c.aclose()
        self._clients.clear()
        logger.info("service_clients_closed")
