"""
Tests for the card registry: dense charge ordering, duplicates, revoke and
the ride-start readiness check.
"""

import pytest
from sqlmodel import select

from kickpay.core.database import get_session_context
from kickpay.core.errors import (
    CardNotFound,
    DuplicateCard,
    HasUnpaidRecord,
    NoAvailableCard,
    PaymentProviderError,
)
from kickpay.models.card import Card
from kickpay.models.schemas import CardRegisterRequest


def _stored_cards(user_id: str):
    with get_session_context() as session:
        return list(session.exec(select(Card).where(Card.user_id == user_id)).all())


# ═══════════════════════════════════════════════════════════════════════
# 1. Registration
# ═══════════════════════════════════════════════════════════════════════

class TestRegister:

    @pytest.mark.asyncio
    async def test_order_follows_registration(self, add_cards, card_service, user):
        """Cards are charged in registration order: 0, 1, 2."""
        await add_cards(user, "1111222233330001", "1111222233330002", "1111222233330003")

        cards = await card_service.list(user)

        assert [c.card_name for c in cards] == ["CARD 0001", "CARD 0002", "CARD 0003"]
        assert [c.order_by for c in cards] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_billing_token_is_encrypted_and_hidden(self, add_cards, card_service, user):
        """The stored token is ciphertext; the default projection omits it."""
        (card,) = await add_cards(user, "1111222233330001")

        assert card.billing_key is None
        (row,) = _stored_cards(user.user_id)
        assert row.billing_key.startswith("v1:")
        assert "tok-1111222233330001" not in row.billing_key

        revealed = await card_service.get(user, card.card_id, reveal_token=True)
        assert revealed.billing_key == "tok-1111222233330001"

    @pytest.mark.asyncio
    async def test_duplicate_card_is_rejected(self, add_cards, user):
        await add_cards(user, "1111222233330001")

        with pytest.raises(DuplicateCard):
            await add_cards(user, "1111222233330001")

    @pytest.mark.asyncio
    async def test_same_card_for_another_user_is_allowed(self, add_cards, card_service, user, other_user):
        await add_cards(user, "1111222233330001")
        await add_cards(other_user, "1111222233330001")

        assert len(await card_service.list(other_user)) == 1

    def test_register_request_rejects_short_card_number(self):
        with pytest.raises(ValueError):
            CardRegisterRequest(card_number="1234", expiry="2812", password="12", birthday="900101")


# ═══════════════════════════════════════════════════════════════════════
# 2. Revoke and reorder
# ═══════════════════════════════════════════════════════════════════════

class TestRevokeAndReorder:

    @pytest.mark.asyncio
    async def test_revoke_first_card_moves_second_to_front(self, add_cards, card_service, gateway, user):
        """Revoking A leaves B with order_by 0 and revokes A's token."""
        card_a, card_b = await add_cards(user, "1111222233330001", "1111222233330002")

        revoked = await card_service.revoke(user, card_a.card_id)

        assert revoked.billing_key is None
        remaining = await card_service.list(user)
        assert [(c.card_id, c.order_by) for c in remaining] == [(card_b.card_id, 0)]
        assert gateway.revoked == ["tok-1111222233330001"]

    @pytest.mark.asyncio
    async def test_revoke_survives_gateway_failure(self, add_cards, card_service, gateway, user):
        """The row is deleted even when the provider refuses to revoke the token."""
        async def refuse(token, payment_key=None):
            raise PaymentProviderError("이미 삭제된 빌키입니다.")

        gateway.revoke_token = refuse
        (card,) = await add_cards(user, "1111222233330001")

        await card_service.revoke(user, card.card_id)

        assert await card_service.list(user) == []

    @pytest.mark.asyncio
    async def test_revoke_unknown_card(self, card_service, user):
        with pytest.raises(CardNotFound):
            await card_service.revoke(user, "00000000-0000-0000-0000-000000000000")

    @pytest.mark.asyncio
    async def test_reorder_assigns_index_order(self, add_cards, card_service, user):
        a, b, c = await add_cards(user, "1111222233330001", "1111222233330002", "1111222233330003")

        cards = await card_service.reorder(user, [c.card_id, a.card_id, b.card_id])

        assert [x.card_id for x in cards] == [c.card_id, a.card_id, b.card_id]
        assert [x.order_by for x in cards] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_reorder_ignores_foreign_cards(self, add_cards, card_service, user, other_user):
        """Another user's card id in the list does not touch that card."""
        (mine,) = await add_cards(user, "1111222233330001")
        (theirs,) = await add_cards(other_user, "1111222233330002")

        await card_service.reorder(user, [theirs.card_id, mine.card_id])

        (their_card,) = await card_service.list(other_user)
        assert their_card.order_by == 0

    @pytest.mark.asyncio
    async def test_partial_reorder_stays_dense(self, add_cards, card_service, user):
        """Unlisted cards follow the listed ones in their previous order."""
        a, b, c = await add_cards(user, "1111222233330001", "1111222233330002", "1111222233330003")

        cards = await card_service.reorder(user, [c.card_id])

        assert [x.card_id for x in cards] == [c.card_id, a.card_id, b.card_id]
        assert [x.order_by for x in cards] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_unknown_ids_do_not_shift_order(self, add_cards, card_service, user):
        a, b, c = await add_cards(user, "1111222233330001", "1111222233330002", "1111222233330003")

        cards = await card_service.reorder(user, ["missing-1", b.card_id, "missing-2", a.card_id, c.card_id, b.card_id])

        assert [x.card_id for x in cards] == [b.card_id, a.card_id, c.card_id]
        assert [x.order_by for x in cards] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_order_stays_dense_across_mixed_operations(self, add_cards, card_service, user):
        """Register, reorder and revoke in any mix always leave 0..n-1."""
        a, b, c = await add_cards(user, "1111222233330001", "1111222233330002", "1111222233330003")

        await card_service.reorder(user, [c.card_id, "missing"])
        assert sorted(x.order_by for x in _stored_cards(user.user_id)) == [0, 1, 2]

        await card_service.revoke(user, c.card_id)
        assert sorted(x.order_by for x in _stored_cards(user.user_id)) == [0, 1]

        (d,) = await add_cards(user, "1111222233330004")
        assert d.order_by == 2

        await card_service.reorder(user, [d.card_id, b.card_id])
        cards = await card_service.list(user)
        assert [x.card_id for x in cards] == [d.card_id, b.card_id, a.card_id]
        assert [x.order_by for x in cards] == [0, 1, 2]


# ═══════════════════════════════════════════════════════════════════════
# 3. Readiness
# ═══════════════════════════════════════════════════════════════════════

class TestCheckReady:

    @pytest.mark.asyncio
    async def test_no_cards(self, card_service, user):
        with pytest.raises(NoAvailableCard):
            await card_service.check_ready(user)

    @pytest.mark.asyncio
    async def test_ready_with_card_and_no_debt(self, add_cards, card_service, user):
        await add_cards(user, "1111222233330001")
        await card_service.check_ready(user)

    @pytest.mark.asyncio
    async def test_unpaid_record_blocks(self, add_cards, card_service, record_service, gateway, user, primary_payment_key):
        await add_cards(user, "1111222233330001")
        gateway.decline("1111222233330001")
        await record_service.create_then_pay(user, amount=1000, name="이용료", required=False)

        with pytest.raises(HasUnpaidRecord):
            await card_service.check_ready(user)
