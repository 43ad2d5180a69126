"""
Record Engine
=============

Creates payment records, charges them against the user's cards, and drives
retry and refund.

STATE MACHINE:
    CREATED → attempt → PAID | UNPAID
    UNPAID  → retry   → PAID (any number of times)
    PAID    → refund  → PARTIALLY_REFUNDED | REFUNDED (amount 0)

CHARGING:
    Cards are tried strictly one after another in ``order_by`` order; the
    first success wins. Per-card failures are collected for logging but do
    not change control flow; only exhaustion is observable.
    ``retired_at`` is written before every attempt so a failed attempt is
    still visible.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlmodel import func, select

from kickpay.core.async_utils import run_sync
from kickpay.core.errors import (
    AlreadyPaid,
    AlreadyRefunded,
    CannotFindRecord,
    KickpayError,
    NoAvailableCard,
    ValidationError,
)
from kickpay.models.payment_key import PaymentKey
from kickpay.models.record import Record
from kickpay.models.schemas import CardOut, RecordQuery
from kickpay.models.user import User
from kickpay.services.card_service import CardService
from kickpay.services.coreservice_client import PlatformClient, RideClient
from kickpay.services.gateway_client import PaymentGateway
from kickpay.services.payment_key_service import PaymentKeyService

logger = logging.getLogger(__name__)


@dataclass
class CardFailure:
    card_id: str
    code: str
    message: Optional[str]


@dataclass
class ChargeResult:
    card: Optional[CardOut] = None
    tid: Optional[str] = None
    failures: List[CardFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.card is not None


def _payment_id_clause(payment_id: str):
    return Record.properties[("openapi", "paymentId")].as_string() == payment_id  # type: ignore[index]


def _ride_id_clause(ride_id: str):
    return Record.properties[("openapi", "rideId")].as_string() == ride_id  # type: ignore[index]


class RecordService:
    def __init__(
        self,
        session_factory: Callable,
        gateway: PaymentGateway,
        payment_keys: PaymentKeyService,
        cards: CardService,
        platform: Optional[PlatformClient] = None,
        rides: Optional[RideClient] = None,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._payment_keys = payment_keys
        self._cards = cards
        self._platform = platform
        self._rides = rides

    # ------------------------------------------------------------------
    # Sync DB helpers
    # ------------------------------------------------------------------

    def _insert(self, record: Record) -> Record:
        with self._session_factory() as session:
            session.add(record)
            session.commit()
            return record

    def _update(self, record_id: str, **changes: Any) -> Record:
        with self._session_factory() as session:
            record = session.get(Record, record_id)
            if record is None:
                raise CannotFindRecord(context={"record_id": record_id})
            for key, value in changes.items():
                setattr(record, key, value)
            record.updated_at = datetime.now(timezone.utc)
            session.add(record)
            session.commit()
            return record

    def _find(self, record_id: str, user_id: Optional[str]) -> Optional[Record]:
        with self._session_factory() as session:
            stmt = select(Record).where(Record.record_id == record_id)
            if user_id:
                stmt = stmt.where(Record.user_id == user_id)
            return session.exec(stmt).first()

    def _find_by_payment_id(self, payment_id: str, user_id: Optional[str]) -> Optional[Record]:
        with self._session_factory() as session:
            stmt = select(Record).where(_payment_id_clause(payment_id))
            if user_id:
                stmt = stmt.where(Record.user_id == user_id)
            return session.exec(stmt).first()

    def _unpaid(self, user_id: str) -> List[Record]:
        with self._session_factory() as session:
            stmt = select(Record).where(
                Record.user_id == user_id,
                Record.processed_at.is_(None),  # type: ignore[union-attr]
                Record.refunded_at.is_(None),  # type: ignore[union-attr]
            )
            return list(session.exec(stmt).all())

    def _search(self, query: RecordQuery, user_id: Optional[str]) -> Tuple[List[Record], int]:
        conditions = []
        if query.search:
            s = query.search
            conditions.append(
                or_(
                    Record.record_id == s,
                    Record.user_id == s,
                    Record.card_id == s,
                    Record.payment_key_id == s,
                    Record.name.contains(s),  # type: ignore[attr-defined]
                    Record.display_name.contains(s),  # type: ignore[attr-defined]
                    Record.description.contains(s),  # type: ignore[union-attr]
                    Record.reason.contains(s),  # type: ignore[union-attr]
                )
            )
        owner = user_id or query.user_id
        if owner:
            conditions.append(Record.user_id == owner)
        if query.only_unpaid:
            # A partly refunded record with a balance left is still owed.
            conditions.append(Record.processed_at.is_(None))  # type: ignore[union-attr]
            conditions.append(Record.amount > 0)

        column = getattr(Record, query.order_by_field)
        ordering = column.asc() if query.order_by_sort == "asc" else column.desc()

        with self._session_factory() as session:
            total = session.exec(select(func.count()).select_from(Record).where(*conditions)).one()
            records = session.exec(
                select(Record).where(*conditions).order_by(ordering, Record.record_id).offset(query.skip).limit(query.take)
            ).all()
        return list(records), total

    def _ride_price(self, openapi_ride_id: str) -> int:
        with self._session_factory() as session:
            stmt = select(func.coalesce(func.sum(Record.amount), 0)).where(_ride_id_clause(openapi_ride_id))
            return int(session.exec(stmt).one())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_record(self, record_id: str, user: Optional[User] = None) -> Record:
        record = await run_sync(self._find, record_id, user.user_id if user else None)
        if record is None:
            raise CannotFindRecord(context={"record_id": record_id})
        return record

    async def get_by_payment_id(self, payment_id: str, user: Optional[User] = None) -> Optional[Record]:
        """Record created for a platform payment (``properties.openapi.paymentId``)."""
        return await run_sync(self._find_by_payment_id, payment_id, user.user_id if user else None)

    async def get_by_payment_id_or_throw(self, payment_id: str, user: Optional[User] = None) -> Record:
        record = await self.get_by_payment_id(payment_id, user)
        if record is None:
            raise CannotFindRecord(context={"payment_id": payment_id})
        return record

    async def get_unpaid_records(self, user: User) -> List[Record]:
        return await run_sync(self._unpaid, user.user_id)

    async def get_records(self, query: RecordQuery, user: Optional[User] = None) -> Tuple[List[Record], int]:
        return await run_sync(self._search, query, user.user_id if user else None)

    # ------------------------------------------------------------------
    # Creation and charging
    # ------------------------------------------------------------------

    async def create_record(
        self,
        user: User,
        *,
        amount: int,
        name: str,
        display_name: Optional[str] = None,
        payment_key_id: str,
        description: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
        card_id: Optional[str] = None,
    ) -> Record:
        """Persist a new unpaid record. No charge is attempted."""
        if amount < 0:
            raise ValidationError("invalid fields: amount", context={"fields": ["amount"]})
        record = Record(
            user_id=user.user_id,
            card_id=card_id,
            payment_key_id=payment_key_id,
            amount=amount,
            initial_amount=amount,
            name=name,
            display_name=display_name or name,
            description=description,
            properties=dict(properties or {}),
        )
        record = await run_sync(self._insert, record)
        logger.info("record_created", extra={"record_id": record.record_id, "user_id": user.user_id, "amount": amount})
        return record

    async def create_then_pay(
        self,
        user: User,
        *,
        amount: int,
        name: str,
        display_name: Optional[str] = None,
        description: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
        payment_key_id: Optional[str] = None,
        payment_key: Optional[PaymentKey] = None,
        card_id: Optional[str] = None,
        required: bool = True,
    ) -> Record:
        if payment_key is None:
            payment_key = await self._payment_keys.resolve(payment_key_id)
        record = await self.create_record(
            user,
            amount=amount,
            name=name,
            display_name=display_name,
            payment_key_id=payment_key.payment_key_id,
            description=description,
            properties=properties,
            card_id=card_id,
        )
        return await self.invoke_payment(user, record, payment_key=payment_key, required=required)

    async def try_payment(
        self,
        user: User,
        record: Record,
        required: bool,
        payment_key: Optional[PaymentKey] = None,
    ) -> ChargeResult:
        """Walk the user's cards in order until one charge succeeds."""
        if payment_key is None:
            payment_key = await self._payment_keys.resolve(record.payment_key_id)

        result = ChargeResult()
        cards = await self._cards.list(user, reveal_token=True)
        for card in cards:
            if required and record.card_id and card.card_id != record.card_id:
                continue
            try:
                tid = await self._gateway.charge(
                    card.billing_key,
                    record.amount,
                    payer_name=user.realname,
                    payer_phone=user.phone_no,
                    payment_key=payment_key,
                    product_name=record.name,
                )
            except KickpayError as exc:
                result.failures.append(CardFailure(card_id=card.card_id, code=exc.code, message=exc.detail))
                logger.warning(
                    "card_charge_failed",
                    extra={
                        "record_id": record.record_id,
                        "card_id": card.card_id,
                        "error.code": exc.code,
                        "error.message": exc.detail,
                    },
                )
                continue

            card.billing_key = None
            result.card = card
            result.tid = tid
            return result

        return result

    async def invoke_payment(
        self,
        user: User,
        record: Record,
        payment_key: Optional[PaymentKey] = None,
        required: bool = True,
    ) -> Record:
        """Attempt the charge and persist the outcome.

        Raises NoAvailableCard only when ``required``; otherwise an
        unsuccessful attempt leaves the record unpaid.
        """
        await run_sync(self._update, record.record_id, retired_at=datetime.now(timezone.utc))

        if record.amount <= 0:
            # Nothing to collect; settle without touching the gateway.
            return await run_sync(
                self._update, record.record_id, card_id=None, tid=None, processed_at=datetime.now(timezone.utc)
            )

        result = await self.try_payment(user, record, required=required, payment_key=payment_key)
        if required and not result.succeeded:
            raise NoAvailableCard(
                detail=f"{len(result.failures)} card(s) declined",
                context={"record_id": record.record_id, "attempts": len(result.failures)},
            )

        updated = await run_sync(
            self._update,
            record.record_id,
            card_id=result.card.card_id if result.card else None,
            tid=result.tid,
            processed_at=datetime.now(timezone.utc) if result.succeeded else None,
        )
        logger.info(
            "record_payment_attempted",
            extra={"record_id": record.record_id, "paid": result.succeeded, "attempts": len(result.failures) + int(result.succeeded)},
        )
        return updated

    async def retry_payment(self, user: User, record: Record) -> Record:
        """Charge an unpaid record again; it must succeed or raise NoAvailableCard."""
        if record.processed_at is not None:
            raise AlreadyPaid(context={"record_id": record.record_id})

        updated = await self.invoke_payment(user, record, required=True)
        await self.mark_platform_processed(updated)
        return updated

    async def mark_platform_processed(self, record: Record) -> None:
        """Tell the platform its payment was collected. Best-effort."""
        openapi = record.openapi
        if not openapi or self._platform is None:
            return
        try:
            await self._platform.mark_payment_processed(openapi["rideId"], openapi["paymentId"])
        except (KickpayError, KeyError) as exc:
            logger.warning(
                "platform_process_notify_failed",
                extra={"record_id": record.record_id, "error": str(exc)},
            )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def refund_record(
        self,
        record: Record,
        reason: Optional[str] = None,
        amount: Optional[int] = None,
    ) -> Record:
        """Refund all or part of the current balance.

        ``amount`` defaults to ``record.amount`` and may not exceed it.
        """
        if record.refunded_at is not None and record.amount <= 0:
            raise AlreadyRefunded(context={"record_id": record.record_id})
        if amount is None:
            amount = record.amount
        if amount < 0 or amount > record.amount:
            raise ValidationError(
                f"refund amount must be between 0 and {record.amount}",
                context={"record_id": record.record_id, "fields": ["amount"]},
            )

        updated_amount = record.amount - amount
        if record.tid and amount > 0:
            is_partial = amount != record.initial_amount or record.refunded_at is not None
            payment_key = await self._payment_keys.resolve(record.payment_key_id)
            await self._gateway.refund(
                record.tid,
                amount,
                reason,
                payment_key=payment_key,
                is_partial=is_partial,
            )

        updated = await run_sync(
            self._update,
            record.record_id,
            refunded_at=datetime.now(timezone.utc),
            amount=updated_amount,
            reason=reason,
        )
        logger.info(
            "record_refunded",
            extra={"record_id": record.record_id, "refunded": amount, "remaining": updated_amount},
        )
        return updated

    # ------------------------------------------------------------------
    # Ride price reporting
    # ------------------------------------------------------------------

    async def compute_ride_price(self, openapi_ride_id: str) -> int:
        """Sum of current amounts across every record of a platform ride."""
        return await run_sync(self._ride_price, openapi_ride_id)

    async def report_ride_price(self, record: Record) -> Optional[int]:
        """Push the ride's aggregate price to the ride service. Best-effort."""
        openapi_ride_id = record.openapi.get("rideId")
        if not openapi_ride_id or self._rides is None:
            return None
        try:
            price = await self.compute_ride_price(openapi_ride_id)
            ride = await self._rides.get_ride_by_openapi_ride_id(openapi_ride_id)
            if not ride.get("rideId"):
                logger.info("ride_not_found_for_price", extra={"openapi_ride_id": openapi_ride_id})
                return None
            await self._rides.modify_ride(ride["rideId"], price=price)
        except KickpayError as exc:
            logger.warning(
                "ride_price_report_failed",
                extra={"openapi_ride_id": openapi_ride_id, "error.code": exc.code, "error.message": exc.detail},
            )
            return None
        return price
