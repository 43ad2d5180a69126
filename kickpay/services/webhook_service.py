"""
Webhook Reconciler
==================

Turns ride platform payment events into record operations.

onPayment:
    One record per platform ``paymentId``; a redelivered event returns the
    existing record without charging again. The charge is not required to
    succeed: an unpaid record is left for the unpaid scheduler.

onRefund:
    Refunds the record created for the ``paymentId`` (CannotFindRecord when
    there is none), with the event's amount and reason when given.

Both report the ride's new aggregate price and notify the user. Neither
step can fail the event.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from kickpay.core.database import ensure_utc
from kickpay.models.record import Record
from kickpay.models.schemas import WebhookPaymentData, WebhookPayload
from kickpay.models.user import User
from kickpay.services.coreservice_client import AccountsClient
from kickpay.services.message_gateway import MessageGateway, format_amount, format_datetime
from kickpay.services.payment_key_service import PaymentKeyService
from kickpay.services.record_service import RecordService

logger = logging.getLogger(__name__)

SERVICE_PAYMENT_TYPE = "SERVICE"


@dataclass
class PaymentOutcome:
    record: Record
    created: bool


def record_name(data: WebhookPaymentData) -> str:
    kind = "이용료" if data.payment_type == SERVICE_PAYMENT_TYPE else "추가금"
    return f"[{kind}] {data.ride.kickboard_code} 킥보드"


def record_description(data: WebhookPaymentData, now: Optional[datetime] = None) -> str:
    if data.payment_type != SERVICE_PAYMENT_TYPE:
        return "이용이 불가능한 곳에 반납을 하여 추가금액이 발생했어요."
    minutes = 0
    if data.ride.started_at is not None:
        now = now or datetime.now(timezone.utc)
        minutes = max(int((now - ensure_utc(data.ride.started_at)).total_seconds() // 60), 0)
    return f"{minutes}분 동안 {data.ride.kickboard_code} 킥보드를 이용했어요."


class WebhookReconciler:
    def __init__(
        self,
        records: RecordService,
        payment_keys: PaymentKeyService,
        accounts: AccountsClient,
        messages: MessageGateway,
    ):
        self._records = records
        self._payment_keys = payment_keys
        self._accounts = accounts
        self._messages = messages

    async def on_payment(self, payload: WebhookPayload) -> PaymentOutcome:
        data = payload.data
        user = await self._accounts.get_user(data.ride.user_id)

        existing = await self._records.get_by_payment_id(data.payment_id, user)
        if existing is not None:
            logger.info(
                "webhook_payment_duplicate",
                extra={"payment_id": data.payment_id, "record_id": existing.record_id, "webhook_id": payload.webhook_id},
            )
            return PaymentOutcome(record=existing, created=False)

        payment_key = await self._payment_keys.resolve_for_franchise(data.franchise_id or data.ride.franchise_id)
        record = await self._records.create_then_pay(
            user,
            amount=data.amount,
            name=record_name(data),
            description=record_description(data),
            properties={"openapi": data.snapshot()},
            payment_key=payment_key,
            required=False,
        )
        logger.info(
            "webhook_payment_recorded",
            extra={
                "payment_id": data.payment_id,
                "record_id": record.record_id,
                "paid": record.processed_at is not None,
                "webhook_id": payload.webhook_id,
            },
        )

        await self._notify_payment(user, record)
        await self._records.report_ride_price(record)
        return PaymentOutcome(record=record, created=True)

    async def on_refund(self, payload: WebhookPayload) -> Record:
        data = payload.data
        user = await self._accounts.get_user(data.ride.user_id)

        record = await self._records.get_by_payment_id_or_throw(data.payment_id, user)
        record = await self._records.refund_record(record, reason=payload.reason, amount=payload.amount)
        logger.info(
            "webhook_refund_applied",
            extra={"payment_id": data.payment_id, "record_id": record.record_id, "remaining": record.amount},
        )

        await self._records.report_ride_price(record)
        await self._notify_refund(user, record)
        return record

    async def _notify_payment(self, user: User, record: Record) -> None:
        template = "payment_completed" if record.processed_at is not None else "payment_failed"
        await self._messages.send(
            user.phone_no,
            template,
            {
                "user": {"realname": user.realname},
                "record": {
                    "name": record.display_name,
                    "amount": format_amount(record.amount),
                    "processedAt": format_datetime(record.processed_at),
                },
            },
        )

    async def _notify_refund(self, user: User, record: Record) -> None:
        template = "refund_completed" if record.amount == 0 else "refund_partial"
        await self._messages.send(
            user.phone_no,
            template,
            {
                "user": {"realname": user.realname},
                "record": {
                    "name": record.display_name,
                    "amount": format_amount(record.amount),
                    "refundedAmount": format_amount(record.initial_amount - record.amount),
                    "refundedAt": format_datetime(record.refunded_at),
                },
            },
        )
