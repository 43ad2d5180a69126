"""
Card Registry
=============

Stored billing tokens per user, ordered by ``order_by`` (charge priority).

Invariant: a user's ``order_by`` values are exactly 0..n-1 after every
register/revoke/reorder. Register assigns ``order_by = count`` in the same
transaction as the insert; revoke deletes and reindexes in one unit of work.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from kickpay.core.async_utils import run_sync
from kickpay.core.errors import CardNotFound, DuplicateCard, HasUnpaidRecord, KickpayError, NoAvailableCard
from kickpay.core.token_crypto import decrypt_with_fallback, encrypt_billing_token
from kickpay.core.unit_of_work import Operation, UnitOfWork
from kickpay.models.card import Card
from kickpay.models.record import Record
from kickpay.models.schemas import CardOut, CardRegisterRequest
from kickpay.models.user import User
from kickpay.services.gateway_client import PaymentGateway

logger = logging.getLogger(__name__)


class CardService:
    def __init__(
        self,
        session_factory: Callable,
        gateway: PaymentGateway,
        secret_key: str,
        previous_secret_key: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._secret_key = secret_key
        self._previous_secret_key = previous_secret_key

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    def _to_out(self, card: Card, reveal_token: bool) -> CardOut:
        out = CardOut.model_validate(card)
        if reveal_token:
            out.billing_key = decrypt_with_fallback(
                card.billing_key,
                self._secret_key,
                self._previous_secret_key,
                card.user_id,
                card.card_name,
            )
        else:
            out.billing_key = None
        return out

    # ------------------------------------------------------------------
    # Sync DB helpers (run via run_sync)
    # ------------------------------------------------------------------

    def _rows(self, user_id: str) -> List[Card]:
        with self._session_factory() as session:
            stmt = select(Card).where(Card.user_id == user_id).order_by(Card.order_by, Card.created_at)
            return list(session.exec(stmt).all())

    def _row(self, user_id: str, card_id: str) -> Optional[Card]:
        with self._session_factory() as session:
            stmt = select(Card).where(Card.user_id == user_id, Card.card_id == card_id)
            return session.exec(stmt).first()

    def _count_cards(self, user_id: str) -> int:
        with self._session_factory() as session:
            return session.exec(select(func.count()).select_from(Card).where(Card.user_id == user_id)).one()

    def _count_unpaid(self, user_id: str) -> int:
        with self._session_factory() as session:
            stmt = (
                select(func.count())
                .select_from(Record)
                .where(
                    Record.user_id == user_id,
                    Record.processed_at.is_(None),  # type: ignore[union-attr]
                    Record.refunded_at.is_(None),  # type: ignore[union-attr]
                )
            )
            return session.exec(stmt).one()

    def _insert(self, user_id: str, card_name: str, token: str) -> Card:
        encrypted = encrypt_billing_token(token, self._secret_key, user_id, card_name)

        def op(session: Session) -> Card:
            duplicate = session.exec(
                select(Card).where(Card.user_id == user_id, Card.card_name == card_name)
            ).first()
            if duplicate is not None:
                raise DuplicateCard(context={"user_id": user_id})
            count = session.exec(select(func.count()).select_from(Card).where(Card.user_id == user_id)).one()
            card = Card(user_id=user_id, card_name=card_name, billing_key=encrypted, order_by=count)
            session.add(card)
            return card

        try:
            (card,) = UnitOfWork(self._session_factory).stage(op).commit()
        except IntegrityError as exc:
            raise DuplicateCard(context={"user_id": user_id}) from exc
        return card

    @staticmethod
    def _delete_op(user_id: str, card_id: str) -> Operation:
        def op(session: Session) -> None:
            card = session.exec(select(Card).where(Card.user_id == user_id, Card.card_id == card_id)).first()
            if card is not None:
                session.delete(card)

        return op

    @staticmethod
    def _reorder_op(user_id: str, card_ids: List[str]) -> Operation:
        """Listed cards first in the given order, the rest after them as before.

        Unknown, foreign and repeated ids are ignored; the result is always a
        dense 0..n-1 ``order_by``.
        """

        def op(session: Session) -> None:
            cards = session.exec(
                select(Card).where(Card.user_id == user_id).order_by(Card.order_by, Card.created_at)
            ).all()
            by_id = {card.card_id: card for card in cards}
            listed = [by_id[card_id] for card_id in dict.fromkeys(card_ids) if card_id in by_id]
            placed = {card.card_id for card in listed}
            now = datetime.now(timezone.utc)
            for index, card in enumerate(listed + [c for c in cards if c.card_id not in placed]):
                if card.order_by != index:
                    card.order_by = index
                    card.updated_at = now
                    session.add(card)

        return op

    @classmethod
    def reindex_op(cls, user_id: str) -> Operation:
        """Reassign a dense 0..n-1 ``order_by`` keeping the current relative order."""
        return cls._reorder_op(user_id, [])

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list(self, user: User, reveal_token: bool = False) -> List[CardOut]:
        rows = await run_sync(self._rows, user.user_id)
        return [self._to_out(card, reveal_token) for card in rows]

    async def get(self, user: User, card_id: str, reveal_token: bool = False) -> CardOut:
        card = await run_sync(self._row, user.user_id, card_id)
        if card is None:
            raise CardNotFound(context={"card_id": card_id})
        return self._to_out(card, reveal_token)

    async def register(self, user: User, details: CardRegisterRequest) -> CardOut:
        billing = await self._gateway.create_billing_token(
            card_number=details.card_number,
            expiry=details.expiry,
            password=details.password,
            birthday=details.birthday,
        )
        card = await run_sync(self._insert, user.user_id, billing.card_label, billing.token)
        logger.info("card_registered", extra={"user_id": user.user_id, "card_id": card.card_id, "order_by": card.order_by})
        return self._to_out(card, reveal_token=False)

    async def revoke(self, user: User, card_id: str) -> CardOut:
        """Delete the card, reindex the rest, then revoke its billing token."""
        card = await self.get(user, card_id, reveal_token=True)

        uow = UnitOfWork(self._session_factory)
        uow.stage(self._delete_op(user.user_id, card_id))
        uow.stage(self.reindex_op(user.user_id))
        await run_sync(uow.commit)

        try:
            await self._gateway.revoke_token(card.billing_key)
        except KickpayError as exc:
            # Row is gone either way; the orphaned token cannot be charged by us.
            logger.warning(
                "card_token_revoke_failed",
                extra={"user_id": user.user_id, "card_id": card_id, "error.code": exc.code, "error.message": exc.detail},
            )

        logger.info("card_revoked", extra={"user_id": user.user_id, "card_id": card_id})
        card.billing_key = None
        return card

    async def reorder(self, user: User, card_ids: List[str]) -> List[CardOut]:
        """Move the listed cards to the front in the given order. Foreign ids are no-ops."""
        await run_sync(UnitOfWork(self._session_factory).stage(self._reorder_op(user.user_id, card_ids)).commit)
        logger.info("cards_reordered", extra={"user_id": user.user_id, "requested": len(card_ids)})
        return await self.list(user)

    async def check_ready(self, user: User) -> None:
        """Fail unless the user has a card and no unpaid record."""
        card_count, unpaid_count = await asyncio.gather(
            run_sync(self._count_cards, user.user_id),
            run_sync(self._count_unpaid, user.user_id),
        )
        if card_count <= 0:
            raise NoAvailableCard(detail="user has no card", context={"user_id": user.user_id})
        if unpaid_count > 0:
            raise HasUnpaidRecord(context={"user_id": user.user_id, "unpaid": unpaid_count})
