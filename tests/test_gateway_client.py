"""
Tests for the card billing gateway client: request shape, result code
handling, and input validation ahead of the network.
"""

from urllib.parse import parse_qs

import httpx
import pytest

from kickpay.core.errors import PaymentProviderError, UpstreamError, ValidationError
from kickpay.models.payment_key import PaymentKey
from kickpay.services.gateway_client import PaymentGateway, format_expiry


class _Recorder:
    """MockTransport handler that replays canned JSON bodies and keeps the requests."""

    def __init__(self, *bodies, status_code: int = 200):
        self.bodies = list(bodies)
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.bodies.pop(0))

    def form(self, index: int = 0) -> dict:
        parsed = parse_qs(self.requests[index].content.decode())
        return {k: v[0] for k, v in parsed.items()}


def _gateway(handler, payment_keys) -> PaymentGateway:
    client = httpx.AsyncClient(base_url="https://gateway.test/api/v1/", transport=httpx.MockTransport(handler))
    return PaymentGateway(client, payment_keys)


# ═══════════════════════════════════════════════════════════════════════
# 1. Tokenize
# ═══════════════════════════════════════════════════════════════════════

class TestCreateBillingToken:

    @pytest.mark.asyncio
    async def test_success_returns_token_and_label(self, payment_keys, primary_payment_key):
        """A 0000 result yields the token and a "{card_name} {card_num}" label."""
        handler = _Recorder({"result_cd": "0000", "card_token": "bk-123", "card_name": "신한", "card_num": "5555****1234"})
        gateway = _gateway(handler, payment_keys)

        billing = await gateway.create_billing_token("5555666677771234", "12/28", "12", "900101")

        assert billing.token == "bk-123"
        assert billing.card_label == "신한 5555****1234"
        assert handler.requests[0].url.path == "/api/v1/gen_billkey"
        form = handler.form()
        assert form["mid"] == "kickpay0m"
        assert form["card_exp"] == "2812"
        assert form["buyer_auth_num"] == "900101"

    @pytest.mark.asyncio
    async def test_provider_message_is_surfaced_verbatim(self, payment_keys, primary_payment_key):
        """Non-0000 results raise PaymentProviderError carrying result_msg unchanged."""
        handler = _Recorder({"result_cd": "3011", "result_msg": "카드번호 오류입니다."})
        gateway = _gateway(handler, payment_keys)

        with pytest.raises(PaymentProviderError) as exc_info:
            await gateway.create_billing_token("5555666677771234", "2812", "12", "900101")

        assert exc_info.value.detail == "카드번호 오류입니다."
        assert exc_info.value.result_code == "3011"

    @pytest.mark.asyncio
    async def test_invalid_card_number_never_reaches_network(self, payment_keys, primary_payment_key):
        """Malformed input fails validation before any request is sent."""
        handler = _Recorder()
        gateway = _gateway(handler, payment_keys)

        with pytest.raises(ValidationError) as exc_info:
            await gateway.create_billing_token("1234", "2812", "12", "900101")

        assert "card_number" in exc_info.value.context["fields"]
        assert handler.requests == []


# ═══════════════════════════════════════════════════════════════════════
# 2. Charge
# ═══════════════════════════════════════════════════════════════════════

class TestCharge:

    @pytest.mark.asyncio
    async def test_charge_sends_master_and_sub_merchant(self, payment_keys, primary_payment_key):
        """The primary key is the master merchant; the given key is the sub-merchant."""
        handler = _Recorder({"result_cd": "0000", "tid": "tid-0001"})
        gateway = _gateway(handler, payment_keys)
        franchise = PaymentKey(name="가맹점", identity="franchise0m", secret_key="franchise-secret")

        tid = await gateway.charge("bk-123", 1500, "홍길동", "01012345678", payment_key=franchise, product_name="이용료")

        assert tid == "tid-0001"
        form = handler.form()
        assert form["mid"] == "kickpay0m"
        assert form["sub_mid"] == "franchise0m"
        assert form["amt"] == "1500"
        assert form["goods_nm"] == "이용료"

    @pytest.mark.asyncio
    async def test_zero_amount_is_rejected(self, payment_keys, primary_payment_key):
        handler = _Recorder()
        gateway = _gateway(handler, payment_keys)

        with pytest.raises(ValidationError):
            await gateway.charge("bk-123", 0, "홍길동", "01012345678")
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_http_error_is_upstream_error(self, payment_keys, primary_payment_key):
        """A 5xx from the provider is an UpstreamError, not a decline."""
        handler = _Recorder({"message": "down"}, status_code=503)
        gateway = _gateway(handler, payment_keys)

        with pytest.raises(UpstreamError) as exc_info:
            await gateway.charge("bk-123", 1000, "홍길동", "01012345678")
        assert not isinstance(exc_info.value, PaymentProviderError)

    @pytest.mark.asyncio
    async def test_connection_error_is_upstream_error(self, payment_keys, primary_payment_key):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        gateway = _gateway(handler, payment_keys)
        with pytest.raises(UpstreamError):
            await gateway.charge("bk-123", 1000, "홍길동", "01012345678")


# ═══════════════════════════════════════════════════════════════════════
# 3. Refund and revoke
# ═══════════════════════════════════════════════════════════════════════

class TestRefundAndRevoke:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["2001", "2013", "0000"])
    async def test_refund_success_codes(self, payment_keys, primary_payment_key, code):
        """Refund success is signalled by 2001/2013 (0000 on older contracts)."""
        handler = _Recorder({"result_cd": code})
        gateway = _gateway(handler, payment_keys)

        await gateway.refund("tid-0001", 4000, "고객 요청", is_partial=True)

        form = handler.form()
        assert form["cancel_amt"] == "4000"
        assert form["partial_cancel"] == "1"
        assert form["cancel_msg"] == "고객 요청"

    @pytest.mark.asyncio
    async def test_refund_failure_code_raises(self, payment_keys, primary_payment_key):
        handler = _Recorder({"result_cd": "2211", "result_msg": "취소 가능 금액을 초과했습니다."})
        gateway = _gateway(handler, payment_keys)

        with pytest.raises(PaymentProviderError) as exc_info:
            await gateway.refund("tid-0001", 4000, None)
        assert exc_info.value.detail == "취소 가능 금액을 초과했습니다."

    @pytest.mark.asyncio
    async def test_revoke_posts_token(self, payment_keys, primary_payment_key):
        handler = _Recorder({"result_cd": "0000"})
        gateway = _gateway(handler, payment_keys)

        await gateway.revoke_token("bk-123")

        assert handler.requests[0].url.path == "/api/v1/del_billkey"
        assert handler.form()["card_token"] == "bk-123"


class TestFormatExpiry:

    @pytest.mark.parametrize(
        "value, expected",
        [("2812", "2812"), ("12/28", "2812"), ("2028-12", "2812"), ("2028-12-31", "2812")],
    )
    def test_accepted_formats(self, value, expected):
        assert format_expiry(value) == expected

    def test_garbage_is_rejected(self):
        with pytest.raises(ValidationError):
            format_expiry("next year")
