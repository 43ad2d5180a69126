"""
Tests for coupon groups and coupons: uniqueness, per-user limits, discount
generation timing, redemption and expiry.
"""

from datetime import datetime, timedelta, timezone

import pytest

from kickpay.core.database import ensure_utc
from kickpay.core.errors import (
    CouponGroupNotFound,
    CouponNotFound,
    DuplicateCouponGroupCode,
    DuplicateCouponGroupName,
    ExceededUsage,
    ExpiredCoupon,
    InvalidState,
)
from kickpay.models.coupon import CouponGroupType
from kickpay.models.schemas import (
    CouponGroupCreateRequest,
    CouponGroupModifyRequest,
    CouponModifyRequest,
    CouponQuery,
)

DISCOUNT_GROUP_ID = "d5b0f2a4-6a3e-4c8b-9f10-2e7d4c1b0a99"


def _group_request(**overrides) -> CouponGroupCreateRequest:
    values = {
        "code": "WELCOME",
        "name": "신규 가입",
        "type": CouponGroupType.ONETIME,
        "limit": 2,
        "description": "첫 이용 할인",
        "properties": {"openapi": {"discountGroupId": DISCOUNT_GROUP_ID}},
    }
    values.update(overrides)
    return CouponGroupCreateRequest(**values)


# ═══════════════════════════════════════════════════════════════════════
# 1. Coupon groups
# ═══════════════════════════════════════════════════════════════════════

class TestCouponGroups:

    @pytest.mark.asyncio
    async def test_create_checks_discount_group(self, coupon_group_service, platform):
        """A referenced platform discount group is verified on create."""
        group = await coupon_group_service.create(_group_request())

        assert group.type == "ONETIME"
        assert group.properties == {"openapi": {"discountGroupId": DISCOUNT_GROUP_ID}}
        platform.get_discount_group.assert_awaited_once_with(DISCOUNT_GROUP_ID)

    @pytest.mark.asyncio
    async def test_duplicate_name_and_code(self, coupon_group_service):
        await coupon_group_service.create(_group_request())

        with pytest.raises(DuplicateCouponGroupName):
            await coupon_group_service.create(_group_request(code="OTHER"))
        with pytest.raises(DuplicateCouponGroupCode):
            await coupon_group_service.create(_group_request(name="다른 이름"))

    @pytest.mark.asyncio
    async def test_modify_rechecks_only_changed_fields(self, coupon_group_service):
        """Keeping the same name is not a conflict; taking another group's is."""
        group = await coupon_group_service.create(_group_request())
        await coupon_group_service.create(_group_request(code="SECOND", name="두번째"))

        group = await coupon_group_service.modify(group, CouponGroupModifyRequest(name="신규 가입", limit=5))
        assert group.limit == 5

        with pytest.raises(DuplicateCouponGroupName):
            await coupon_group_service.modify(group, CouponGroupModifyRequest(name="두번째"))

    @pytest.mark.asyncio
    async def test_lookup_by_code(self, coupon_group_service):
        group = await coupon_group_service.create(_group_request())

        assert (await coupon_group_service.get_by_code("WELCOME")).coupon_group_id == group.coupon_group_id
        with pytest.raises(CouponGroupNotFound):
            await coupon_group_service.get_by_code("NOPE")

    @pytest.mark.asyncio
    async def test_delete_removes_issued_coupons(self, coupon_group_service, coupon_service, user):
        group = await coupon_group_service.create(_group_request())
        coupon = await coupon_service.enroll(user, group)

        await coupon_group_service.delete(group)

        with pytest.raises(CouponGroupNotFound):
            await coupon_group_service.get(group.coupon_group_id)
        with pytest.raises(CouponNotFound):
            await coupon_service.get_coupon(user, coupon.coupon_id)


# ═══════════════════════════════════════════════════════════════════════
# 2. Enrollment
# ═══════════════════════════════════════════════════════════════════════

class TestEnroll:

    @pytest.mark.asyncio
    async def test_limit_is_enforced_per_user(self, coupon_group_service, coupon_service, user, other_user):
        """With limit 2 the third enrollment fails; other users are unaffected."""
        group = await coupon_group_service.create(_group_request(limit=2))

        await coupon_service.enroll_by_code(user, "WELCOME")
        await coupon_service.enroll_by_code(user, "WELCOME")
        with pytest.raises(ExceededUsage):
            await coupon_service.enroll_by_code(user, "WELCOME")

        await coupon_service.enroll_by_group_id(other_user, group.coupon_group_id)
        coupons, total = await coupon_service.get_coupons(user, CouponQuery())
        assert total == 2

    @pytest.mark.asyncio
    async def test_onetime_defers_discount_generation(self, coupon_group_service, coupon_service, platform, user):
        group = await coupon_group_service.create(_group_request())

        coupon = await coupon_service.enroll(user, group)

        assert coupon.properties == {}
        platform.generate_discount.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_longtime_generates_at_issuance(self, coupon_group_service, coupon_service, platform, user):
        """LONGTIME coupons get their discount and its expiry when issued."""
        platform.generate_discount.return_value = {"discountId": "discount-7", "expiredAt": "2099-01-01T00:00:00Z"}
        group = await coupon_group_service.create(_group_request(type=CouponGroupType.LONGTIME))

        coupon = await coupon_service.enroll(user, group)

        assert coupon.properties["openapi"]["discountId"] == "discount-7"
        assert coupon.expired_at == datetime(2099, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_validity_overrides_discount_expiry(self, coupon_group_service, coupon_service, platform, user):
        platform.generate_discount.return_value = {"discountId": "discount-7", "expiredAt": "2099-01-01T00:00:00Z"}
        group = await coupon_group_service.create(_group_request(type=CouponGroupType.LONGTIME, validity=3600))

        coupon = await coupon_service.enroll(user, group)

        remaining = coupon.expired_at - datetime.now(timezone.utc)
        assert timedelta(minutes=59) < remaining <= timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_unknown_code(self, coupon_service, user):
        with pytest.raises(CouponGroupNotFound):
            await coupon_service.enroll_by_code(user, "MISSING")


# ═══════════════════════════════════════════════════════════════════════
# 3. Redemption
# ═══════════════════════════════════════════════════════════════════════

class TestRedeem:

    @pytest.mark.asyncio
    async def test_onetime_redeem_is_idempotent(self, coupon_group_service, coupon_service, platform, user):
        """Redeeming twice returns the same discount and asks the platform once."""
        group = await coupon_group_service.create(_group_request())
        enrolled = await coupon_service.enroll(user, group)

        coupon = await coupon_service.get_coupon(user, enrolled.coupon_id, with_group=True)
        coupon, first = await coupon_service.redeem(coupon)
        used_at = coupon.used_at

        coupon = await coupon_service.get_coupon(user, enrolled.coupon_id, with_group=True)
        coupon, second = await coupon_service.redeem(coupon)

        assert first == second
        assert first["openapi"]["discountId"] == "discount-1"
        assert used_at is not None
        assert ensure_utc(coupon.used_at) == ensure_utc(used_at)
        platform.generate_discount.assert_awaited_once_with(DISCOUNT_GROUP_ID)

    @pytest.mark.asyncio
    async def test_used_coupons_hidden_on_request(self, coupon_group_service, coupon_service, user):
        group = await coupon_group_service.create(_group_request())
        enrolled = await coupon_service.enroll(user, group)
        await coupon_service.enroll(user, group)
        await coupon_service.redeem(await coupon_service.get_coupon(user, enrolled.coupon_id, with_group=True))

        _, total = await coupon_service.get_coupons(user, CouponQuery(show_used=False))

        assert total == 1

    @pytest.mark.asyncio
    async def test_expired_coupon_cannot_be_redeemed(self, coupon_group_service, coupon_service, user):
        group = await coupon_group_service.create(_group_request())
        enrolled = await coupon_service.enroll(user, group)
        past = datetime.now(timezone.utc) - timedelta(days=1)
        await coupon_service.modify_coupon(enrolled, CouponModifyRequest(expired_at=past))

        coupon = await coupon_service.get_coupon(user, enrolled.coupon_id, with_group=True)
        with pytest.raises(ExpiredCoupon):
            await coupon_service.redeem(coupon)

    @pytest.mark.asyncio
    async def test_redeem_requires_loaded_group(self, coupon_group_service, coupon_service, user):
        group = await coupon_group_service.create(_group_request())
        enrolled = await coupon_service.enroll(user, group)

        coupon = await coupon_service.get_coupon(user, enrolled.coupon_id)
        with pytest.raises(InvalidState):
            await coupon_service.redeem(coupon)

    @pytest.mark.asyncio
    async def test_coupon_is_scoped_to_owner(self, coupon_group_service, coupon_service, user, other_user):
        group = await coupon_group_service.create(_group_request())
        enrolled = await coupon_service.enroll(user, group)

        with pytest.raises(CouponNotFound):
            await coupon_service.get_coupon(other_user, enrolled.coupon_id)

    @pytest.mark.asyncio
    async def test_deleted_coupon_frees_limit(self, coupon_group_service, coupon_service, user):
        group = await coupon_group_service.create(_group_request(limit=1))
        coupon = await coupon_service.enroll(user, group)

        await coupon_service.delete_coupon(coupon)

        await coupon_service.enroll(user, group)
