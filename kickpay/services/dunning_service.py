"""
Dunning log: escalation history for unpaid records.

Each escalation appends a Dunning row for its channel and stamps
``Record.dunned_at`` in the same transaction.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlmodel import Session, func, select

from kickpay.core.async_utils import run_sync
from kickpay.core.errors import CannotFindRecord
from kickpay.core.unit_of_work import Operation, UnitOfWork
from kickpay.models.dunning import CHANNEL_COLUMNS, Dunning, DunningChannel
from kickpay.models.record import Record

logger = logging.getLogger(__name__)


class DunningService:
    def __init__(self, session_factory: Callable):
        self._session_factory = session_factory

    @staticmethod
    def add_op(record_id: str, channel: DunningChannel) -> Operation:
        column = CHANNEL_COLUMNS[DunningChannel(channel)]

        def op(session: Session) -> Dunning:
            record = session.get(Record, record_id)
            if record is None:
                raise CannotFindRecord(context={"record_id": record_id})
            now = datetime.now(timezone.utc)
            dunning = Dunning(**{column: record_id}, created_at=now)
            record.dunned_at = now
            record.updated_at = now
            session.add(dunning)
            session.add(record)
            return dunning

        return op

    def _count(self, record_id: str, channel: DunningChannel) -> int:
        column = getattr(Dunning, CHANNEL_COLUMNS[DunningChannel(channel)])
        with self._session_factory() as session:
            return session.exec(select(func.count()).select_from(Dunning).where(column == record_id)).one()

    def _last(self, record_id: str, channel: DunningChannel) -> Optional[Dunning]:
        column = getattr(Dunning, CHANNEL_COLUMNS[DunningChannel(channel)])
        with self._session_factory() as session:
            stmt = select(Dunning).where(column == record_id).order_by(Dunning.created_at.desc())  # type: ignore[attr-defined]
            return session.exec(stmt).first()

    async def add_dunning(self, record: Record, channel: DunningChannel) -> Dunning:
        """Append an escalation and stamp ``record.dunned_at`` atomically."""
        (dunning,) = await run_sync(UnitOfWork(self._session_factory).stage(self.add_op(record.record_id, channel)).commit)
        record.dunned_at = dunning.created_at
        logger.info("dunning_added", extra={"record_id": record.record_id, "channel": DunningChannel(channel).value})
        return dunning

    async def count(self, record: Record, channel: DunningChannel) -> int:
        return await run_sync(self._count, record.record_id, channel)

    async def last(self, record: Record, channel: DunningChannel) -> Optional[Dunning]:
        return await run_sync(self._last, record.record_id, channel)
