"""
Message Gateway
===============

Sends templated SMS/app messages to users. Delivery is best-effort:
failures are logged and never fail the calling workflow.

TEMPLATES:
    payment_completed   - charge succeeded
    payment_failed      - charge failed, record left unpaid
    unpaid_completed    - scheduler collected an unpaid record
    unpaid_request      - scheduler asks the user to pay
    refund_completed    - full refund
    refund_partial      - partial refund
"""

import logging
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

KST = timezone(timedelta(hours=9))

TEMPLATES = frozenset({
    "payment_completed",
    "payment_failed",
    "unpaid_completed",
    "unpaid_request",
    "refund_completed",
    "refund_partial",
})


def format_amount(amount: int) -> str:
    return f"{amount:,}원"


def format_datetime(value: Optional[datetime]) -> str:
    """Render as ``M월 D일 H시 m분`` in Korea time."""
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    local = value.astimezone(KST)
    return f"{local.month}월 {local.day}일 {local.hour}시 {local.minute}분"


class MessageGateway:
    def __init__(self, client: Optional[httpx.AsyncClient], access_key: Optional[str] = None):
        self._client = client
        self._access_key = access_key

    async def send(self, phone: str, template: str, fields: Dict[str, Any]) -> bool:
        """Send a message. Returns False when it could not be delivered."""
        if template not in TEMPLATES:
            raise ValueError(f"Unknown message template: {template!r}")
        if self._client is None or not phone:
            logger.info("message_skipped", extra={"template": template, "has_phone": bool(phone)})
            return False

        headers = {"Authorization": f"Bearer {self._access_key}"} if self._access_key else {}
        try:
            response = await self._client.post(
                "send",
                json={"phone": phone, "name": template, "fields": fields},
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("message_send_failed", extra={"template": template, "error": str(exc)})
            return False

        logger.info("message_sent", extra={"template": template})
        return True
