"""
Unpaid-Debt Scheduler
=====================

Periodically re-attempts every unpaid record.

PER RUN:
    - Pages through unpaid records oldest first. Records of one user share a
      single accounts lookup per page; users whose lookup failed are skipped
      for the rest of the run.
    - Records of a page are processed concurrently. One record failing never
      stops the others; the failure is captured and logged.

PER RECORD:
    1. append a ``retry`` dunning entry
    2. retry the charge
    3. success → "unpaid_completed" message
       failure → "unpaid_request" message, at most once every
                 ``dunning_message_interval_days`` per record, logged as a
                 ``message`` dunning entry
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Set

from kickpay.core.database import ensure_utc
from kickpay.core.errors import KickpayError
from kickpay.core.issue_tracker import IssueTracker
from kickpay.core.structured_logging import run_id_var
from kickpay.models.dunning import DunningChannel
from kickpay.models.record import Record
from kickpay.models.schemas import RecordQuery
from kickpay.models.user import User
from kickpay.services.card_service import CardService
from kickpay.services.coreservice_client import AccountsClient
from kickpay.services.dunning_service import DunningService
from kickpay.services.message_gateway import MessageGateway, format_amount, format_datetime
from kickpay.services.record_service import RecordService

logger = logging.getLogger(__name__)


@dataclass
class RunStats:
    run_id: str
    processed: int = 0
    paid: int = 0
    unpaid: int = 0
    skipped: int = 0
    errors: int = 0
    messages: int = 0


@dataclass
class _RunState:
    stats: RunStats
    lookups: Dict[str, "asyncio.Task[Optional[User]]"] = field(default_factory=dict)
    failed_users: Set[str] = field(default_factory=set)


class UnpaidScheduler:
    def __init__(
        self,
        records: RecordService,
        cards: CardService,
        dunnings: DunningService,
        accounts: AccountsClient,
        messages: MessageGateway,
        issue_tracker: IssueTracker,
        page_size: int = 10,
        message_interval_days: int = 7,
    ):
        self._records = records
        self._cards = cards
        self._dunnings = dunnings
        self._accounts = accounts
        self._messages = messages
        self._issues = issue_tracker
        self._page_size = page_size
        self._message_interval = timedelta(days=message_interval_days)

    async def run_loop(self, interval_s: float) -> None:
        """Run forever, one batch every ``interval_s`` seconds."""
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Unpaid scheduler run failed: %s", e, exc_info=True)
            await asyncio.sleep(interval_s)

    async def run_once(self) -> RunStats:
        stats = RunStats(run_id=uuid.uuid4().hex[:12])
        token = run_id_var.set(stats.run_id)
        try:
            state = _RunState(stats=stats)
            logger.info("unpaid_run_started")

            skip = 0
            remaining: Optional[int] = None
            while remaining is None or remaining > 0:
                query = RecordQuery(
                    take=self._page_size,
                    skip=skip,
                    only_unpaid=True,
                    order_by_field="created_at",
                    order_by_sort="asc",
                )
                page, total = await self._records.get_records(query)
                if not page:
                    break
                if remaining is None:
                    remaining = total

                state.lookups.clear()
                outcomes = await asyncio.gather(*(self._process(record, state) for record in page))

                # Paid records leave the unpaid set; only the rest shift the offset.
                skip += sum(1 for paid in outcomes if not paid)
                remaining -= len(page)

            logger.info(
                "unpaid_run_finished",
                extra={
                    "processed": stats.processed,
                    "paid": stats.paid,
                    "unpaid": stats.unpaid,
                    "skipped": stats.skipped,
                    "errors": stats.errors,
                    "messages": stats.messages,
                },
            )
            return stats
        finally:
            run_id_var.reset(token)

    async def _lookup_user(self, user_id: str, state: _RunState) -> Optional[User]:
        """Resolve the record owner; concurrent records of one user await the same lookup."""
        if user_id in state.failed_users:
            return None
        pending = state.lookups.get(user_id)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_user(user_id, state))
            state.lookups[user_id] = pending
        return await pending

    async def _fetch_user(self, user_id: str, state: _RunState) -> Optional[User]:
        try:
            return await self._accounts.get_user(user_id)
        except Exception as exc:
            state.failed_users.add(user_id)
            event_id = self._issues.capture(exc, component="unpaid_scheduler")
            logger.error("unpaid_user_lookup_failed", extra={"user_id": user_id, "event_id": event_id})
            return None

    async def _process(self, record: Record, state: _RunState) -> bool:
        """Handle one record. Returns True when it got paid."""
        stats = state.stats
        user = await self._lookup_user(record.user_id, state)
        if user is None:
            stats.skipped += 1
            return False

        stats.processed += 1
        try:
            if await self._retry(record, user):
                stats.paid += 1
                return True
            stats.unpaid += 1
            if await self._request_payment(record, user):
                stats.messages += 1
        except Exception as exc:
            stats.errors += 1
            event_id = self._issues.capture(exc, component="unpaid_scheduler")
            logger.error(
                "unpaid_record_failed",
                extra={"record_id": record.record_id, "user_id": user.user_id, "event_id": event_id},
            )
        return False

    async def _retry(self, record: Record, user: User) -> bool:
        await self._dunnings.add_dunning(record, DunningChannel.RETRY)
        try:
            paid = await self._records.retry_payment(user, record)
        except KickpayError as exc:
            logger.info(
                "unpaid_retry_declined",
                extra={"record_id": record.record_id, "user_id": user.user_id, "error.code": exc.code},
            )
            return False

        logger.info("unpaid_collected", extra={"record_id": paid.record_id, "user_id": user.user_id, "amount": paid.amount})
        card_name = ""
        if paid.card_id:
            try:
                card_name = (await self._cards.get(user, paid.card_id)).card_name
            except KickpayError:
                card_name = ""
        await self._messages.send(
            user.phone_no,
            "unpaid_completed",
            {
                "user": {"realname": user.realname},
                "card": {"cardName": card_name},
                "record": {
                    "name": paid.display_name,
                    "amount": format_amount(paid.amount),
                    "processedAt": format_datetime(paid.processed_at),
                },
            },
        )
        return True

    async def _request_payment(self, record: Record, user: User) -> bool:
        """Ask the user to pay unless a request went out within the interval."""
        last = await self._dunnings.last(record, DunningChannel.MESSAGE)
        now = datetime.now(timezone.utc)
        if last is not None and now - ensure_utc(last.created_at) < self._message_interval:
            return False

        sent = await self._messages.send(
            user.phone_no,
            "unpaid_request",
            {
                "user": {"realname": user.realname},
                "record": {
                    "name": record.display_name,
                    "amount": format_amount(record.amount),
                    "createdAt": format_datetime(ensure_utc(record.created_at)),
                },
            },
        )
        if not sent:
            return False
        await self._dunnings.add_dunning(record, DunningChannel.MESSAGE)
        return True
