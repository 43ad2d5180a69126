"""
Payment key lookups.

The primary key is the master merchant for every charge and the default
for records and cards without an explicit key.
"""

import logging
from typing import Callable, Optional

from sqlmodel import select

from kickpay.core.async_utils import run_sync
from kickpay.core.errors import PaymentKeyNotFound
from kickpay.models.payment_key import PaymentKey

logger = logging.getLogger(__name__)


class PaymentKeyService:
    def __init__(self, session_factory: Callable):
        self._session_factory = session_factory

    def _get(self, payment_key_id: str) -> Optional[PaymentKey]:
        with self._session_factory() as session:
            return session.get(PaymentKey, payment_key_id)

    def _get_primary(self) -> Optional[PaymentKey]:
        with self._session_factory() as session:
            return session.exec(select(PaymentKey).where(PaymentKey.primary == True)).first()  # noqa: E712

    def _get_by_franchise(self, franchise_id: str) -> Optional[PaymentKey]:
        with self._session_factory() as session:
            return session.exec(
                select(PaymentKey).where(PaymentKey.franchise_id == franchise_id)
            ).first()

    async def get_payment_key(self, payment_key_id: str) -> PaymentKey:
        payment_key = await run_sync(self._get, payment_key_id)
        if payment_key is None:
            raise PaymentKeyNotFound(context={"payment_key_id": payment_key_id})
        return payment_key

    async def get_primary_payment_key(self) -> PaymentKey:
        payment_key = await run_sync(self._get_primary)
        if payment_key is None:
            raise PaymentKeyNotFound(detail="no primary payment key")
        return payment_key

    async def resolve(self, payment_key_id: Optional[str] = None) -> PaymentKey:
        """Explicit key when given, otherwise the primary one."""
        if payment_key_id:
            return await self.get_payment_key(payment_key_id)
        return await self.get_primary_payment_key()

    async def resolve_for_franchise(self, franchise_id: Optional[str]) -> PaymentKey:
        """Sub-merchant key mapped to a platform franchise, falling back to primary."""
        if franchise_id:
            payment_key = await run_sync(self._get_by_franchise, franchise_id)
            if payment_key is not None:
                return payment_key
            logger.info("payment_key_franchise_unmapped", extra={"franchise_id": franchise_id})
        return await self.get_primary_payment_key()
