"""
Pytest configuration for kickpay tests.
Points the service at a throwaway SQLite database and provides fakes for
the card gateway and the core service collaborators.
"""

import os
import tempfile

# Must be set before any kickpay imports (settings are read at import time)
_test_data_dir = tempfile.mkdtemp(prefix="kickpay_test_")
os.environ.setdefault("KICKPAY_DATA_DIRECTORY", _test_data_dir)
os.environ.setdefault("KICKPAY_LOG_DIRECTORY", os.path.join(_test_data_dir, "logs"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_test_data_dir}/test.db")
os.environ.setdefault("KICKPAY_SECRET_KEY", "test-secret-key-for-billing-tokens")
os.environ.setdefault("KICKPAY_INTERNAL_JWT_SECRET", "test-internal-jwt-secret")
os.environ.setdefault("KICKPAY_UNPAID_SCHEDULER_ENABLED", "false")
os.environ.setdefault("KICKPAY_ENVIRONMENT", "development")

from typing import Dict, List, Set
from unittest.mock import AsyncMock

import pytest
from sqlmodel import SQLModel

from kickpay.core.database import get_engine, get_session_context

# Import all models so their tables are registered on SQLModel.metadata
from kickpay.models.card import Card  # noqa: F401
from kickpay.models.coupon import Coupon, CouponGroup  # noqa: F401
from kickpay.models.dunning import Dunning  # noqa: F401
from kickpay.models.payment_key import PaymentKey
from kickpay.models.record import Record  # noqa: F401

SQLModel.metadata.create_all(get_engine())

# Load error registry so KickpayError returns correct HTTP status codes
from kickpay.core.errors import PaymentProviderError
from kickpay.core.errors.registry import error_registry
error_registry.load()

from kickpay.core.issue_tracker import IssueTracker
from kickpay.models.schemas import CardRegisterRequest
from kickpay.models.user import User
from kickpay.services.card_service import CardService
from kickpay.services.coupon_group_service import CouponGroupService
from kickpay.services.coupon_service import CouponService
from kickpay.services.dunning_service import DunningService
from kickpay.services.gateway_client import BillingToken
from kickpay.services.payment_key_service import PaymentKeyService
from kickpay.services.record_service import RecordService

TEST_SECRET_KEY = os.environ["KICKPAY_SECRET_KEY"]


class FakeGateway:
    """In-memory stand-in for PaymentGateway.

    Cards passed to ``decline()`` fail to charge. Tokens are
    ``tok-<card_number>`` so declines can be matched at charge time.
    """

    def __init__(self):
        self.declined_tokens: Set[str] = set()
        self.charges: List[Dict] = []
        self.refunds: List[Dict] = []
        self.revoked: List[str] = []
        self._tid_seq = 0

    def decline(self, card_number: str) -> None:
        self.declined_tokens.add(f"tok-{card_number}")

    def accept(self, card_number: str) -> None:
        self.declined_tokens.discard(f"tok-{card_number}")

    async def create_billing_token(self, card_number, expiry, password, birthday, payment_key=None):
        return BillingToken(token=f"tok-{card_number}", card_label=f"CARD {card_number[-4:]}")

    async def charge(self, token, amount, payer_name, payer_phone, payment_key=None, product_name=""):
        self.charges.append({"token": token, "amount": amount, "payment_key": payment_key})
        if token in self.declined_tokens:
            raise PaymentProviderError("잔액이 부족합니다.", result_code="3011")
        self._tid_seq += 1
        return f"tid-{self._tid_seq:04d}"

    async def refund(self, tid, amount, reason, payment_key=None, is_partial=False):
        self.refunds.append({"tid": tid, "amount": amount, "reason": reason, "is_partial": is_partial})

    async def revoke_token(self, token, payment_key=None):
        self.revoked.append(token)


def card_details(card_number: str) -> Dict[str, str]:
    return {"card_number": card_number, "expiry": "2812", "password": "12", "birthday": "900101"}


@pytest.fixture(autouse=True)
def clean_tables():
    """Empty every table before each test."""
    engine = get_engine()
    with engine.begin() as conn:
        for table in reversed(SQLModel.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture
def primary_payment_key() -> PaymentKey:
    key = PaymentKey(name="본사", identity="kickpay0m", secret_key="merchant-secret", primary=True)
    with get_session_context() as session:
        session.add(key)
        session.commit()
    return key


@pytest.fixture
def user() -> User:
    return User(user_id="3f1c2a9e-0d4b-4c8e-9a51-7e2b6c0d1f11", realname="홍길동", phone_no="01012345678")


@pytest.fixture
def other_user() -> User:
    return User(user_id="8b7e1d42-5c3a-4f9b-8e26-1a0c9d4e7f22", realname="김철수", phone_no="01087654321")


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def platform() -> AsyncMock:
    platform = AsyncMock()
    platform.get_discount_group.return_value = {"discountGroupId": "d5b0f2a4-6a3e-4c8b-9f10-2e7d4c1b0a99"}
    platform.generate_discount.return_value = {"discountId": "discount-1", "expiredAt": None}
    return platform


@pytest.fixture
def rides() -> AsyncMock:
    rides = AsyncMock()
    rides.get_ride_by_openapi_ride_id.return_value = {"rideId": "core-ride-1"}
    return rides


@pytest.fixture
def accounts(user) -> AsyncMock:
    accounts = AsyncMock()
    accounts.get_user.return_value = user
    accounts.authorize_session.return_value = user
    return accounts


@pytest.fixture
def messages() -> AsyncMock:
    messages = AsyncMock()
    messages.send.return_value = True
    return messages


@pytest.fixture
def issue_tracker(tmp_path) -> IssueTracker:
    return IssueTracker(persist_path=str(tmp_path / "issues.json"))


@pytest.fixture
def payment_keys() -> PaymentKeyService:
    return PaymentKeyService(get_session_context)


@pytest.fixture
def card_service(gateway) -> CardService:
    return CardService(get_session_context, gateway, secret_key=TEST_SECRET_KEY)


@pytest.fixture
def record_service(gateway, payment_keys, card_service, platform, rides) -> RecordService:
    return RecordService(
        get_session_context,
        gateway,
        payment_keys,
        card_service,
        platform=platform,
        rides=rides,
    )


@pytest.fixture
def dunning_service() -> DunningService:
    return DunningService(get_session_context)


@pytest.fixture
def coupon_group_service(platform) -> CouponGroupService:
    return CouponGroupService(get_session_context, platform)


@pytest.fixture
def coupon_service(coupon_group_service) -> CouponService:
    return CouponService(get_session_context, coupon_group_service)


@pytest.fixture
def add_cards(card_service):
    """Register cards for a user in the given order; returns the CardOut list."""

    async def _add(user: User, *card_numbers: str) -> List:
        return [
            await card_service.register(user, CardRegisterRequest(**card_details(number)))
            for number in card_numbers
        ]

    return _add
