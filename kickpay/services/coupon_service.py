"""
Coupon/Discount Engine
======================

ENROLLMENT:
    The group's ``limit`` caps how many live coupons a user may hold from it.
    The count and the insert share one unit of work; the count is read again
    after the insert is flushed and the whole transaction is rolled back
    with ExceededUsage if a concurrent enrollment pushed it over the limit.

    LONGTIME groups get their platform discount at issuance. ONETIME groups
    defer it to the first redemption.

    ``expired_at`` comes from the discount's expiry, overridden by the
    group's ``validity`` (seconds from now) when the group has one.

REDEMPTION:
    ONETIME coupons get ``used_at`` on first redemption. Properties already
    stored on the coupon are returned unchanged; otherwise they are
    generated, stored, and returned, so the platform is asked once.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import TypeAdapter
from sqlalchemy import or_
from sqlalchemy.orm import selectinload
from sqlmodel import Session, func, select

from kickpay.core.async_utils import run_sync
from kickpay.core.database import ensure_utc
from kickpay.core.errors import (
    CouponNotFound,
    ExceededUsage,
    ExpiredCoupon,
    InvalidState,
)
from kickpay.core.unit_of_work import UnitOfWork
from kickpay.models.coupon import Coupon, CouponGroup, CouponGroupType
from kickpay.models.schemas import CouponModifyRequest, CouponQuery
from kickpay.models.user import User
from kickpay.services.coupon_group_service import CouponGroupService

logger = logging.getLogger(__name__)

_datetime_adapter = TypeAdapter(datetime)


def _parse_expiry(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return ensure_utc(_datetime_adapter.validate_python(value))


class CouponService:
    def __init__(self, session_factory: Callable, groups: CouponGroupService):
        self._session_factory = session_factory
        self._groups = groups

    # ------------------------------------------------------------------
    # Sync DB helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _live_count(session: Session, user_id: str, coupon_group_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(Coupon)
            .where(
                Coupon.user_id == user_id,
                Coupon.coupon_group_id == coupon_group_id,
                Coupon.deleted_at.is_(None),  # type: ignore[union-attr]
            )
        )
        return session.exec(stmt).one()

    def _find(self, user_id: str, coupon_id: str, with_group: bool) -> Optional[Coupon]:
        with self._session_factory() as session:
            stmt = select(Coupon).where(
                Coupon.user_id == user_id,
                Coupon.coupon_id == coupon_id,
                Coupon.deleted_at.is_(None),  # type: ignore[union-attr]
            )
            if with_group:
                stmt = stmt.options(selectinload(Coupon.coupon_group))  # type: ignore[arg-type]
            return session.exec(stmt).first()

    def _search(self, user_id: str, query: CouponQuery) -> Tuple[List[Coupon], int]:
        conditions = [Coupon.user_id == user_id, Coupon.deleted_at.is_(None)]  # type: ignore[union-attr]
        if query.search:
            s = query.search
            conditions.append(
                or_(
                    Coupon.coupon_id == s,
                    Coupon.coupon_group_id == s,
                    CouponGroup.name.contains(s),  # type: ignore[attr-defined]
                    CouponGroup.description.contains(s),  # type: ignore[attr-defined]
                )
            )
        if not query.show_used:
            conditions.append(Coupon.used_at.is_(None))  # type: ignore[union-attr]

        joined = Coupon.coupon_group_id == CouponGroup.coupon_group_id
        column = getattr(Coupon, query.order_by_field)
        ordering = column.asc() if query.order_by_sort == "asc" else column.desc()

        with self._session_factory() as session:
            total = session.exec(
                select(func.count()).select_from(Coupon).join(CouponGroup, joined).where(*conditions)
            ).one()
            coupons = session.exec(
                select(Coupon)
                .join(CouponGroup, joined)
                .where(*conditions)
                .options(selectinload(Coupon.coupon_group))  # type: ignore[arg-type]
                .order_by(ordering)
                .offset(query.skip)
                .limit(query.take)
            ).all()
        return list(coupons), total

    def _update(self, coupon_id: str, changes: Dict[str, Any]) -> Coupon:
        with self._session_factory() as session:
            coupon = session.exec(
                select(Coupon)
                .where(Coupon.coupon_id == coupon_id)
                .options(selectinload(Coupon.coupon_group))  # type: ignore[arg-type]
            ).first()
            if coupon is None:
                raise CouponNotFound(context={"coupon_id": coupon_id})
            for key, value in changes.items():
                setattr(coupon, key, value)
            coupon.updated_at = datetime.now(timezone.utc)
            session.add(coupon)
            session.commit()
            return coupon

    def _delete(self, coupon_id: str) -> None:
        with self._session_factory() as session:
            coupon = session.get(Coupon, coupon_id)
            if coupon is not None:
                session.delete(coupon)
                session.commit()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_coupon(self, user: User, coupon_id: str, with_group: bool = False) -> Coupon:
        coupon = await run_sync(self._find, user.user_id, coupon_id, with_group)
        if coupon is None:
            raise CouponNotFound(context={"coupon_id": coupon_id})
        return coupon

    async def get_coupons(self, user: User, query: CouponQuery) -> Tuple[List[Coupon], int]:
        return await run_sync(self._search, user.user_id, query)

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    async def enroll_by_code(self, user: User, code: str) -> Coupon:
        group = await self._groups.get_by_code(code)
        return await self.enroll(user, group)

    async def enroll_by_group_id(self, user: User, coupon_group_id: str) -> Coupon:
        group = await self._groups.get(coupon_group_id)
        return await self.enroll(user, group)

    async def enroll(self, user: User, group: CouponGroup) -> Coupon:
        """Issue a coupon from ``group`` to ``user``."""
        with_generate = group.type == CouponGroupType.LONGTIME.value
        properties = await self._groups.coupon_properties_for_group(group, with_generate=with_generate)

        expired_at = _parse_expiry(properties.get("openapi", {}).get("expiredAt"))
        if group.validity:
            expired_at = datetime.now(timezone.utc) + timedelta(seconds=group.validity)

        user_id = user.user_id
        coupon_group_id = group.coupon_group_id
        limit = group.limit

        def op(session: Session) -> Coupon:
            if limit and self._live_count(session, user_id, coupon_group_id) >= limit:
                raise ExceededUsage(f"limit {limit}", context={"coupon_group_id": coupon_group_id, "limit": limit})
            coupon = Coupon(
                user_id=user_id,
                coupon_group_id=coupon_group_id,
                properties=properties,
                expired_at=expired_at,
            )
            session.add(coupon)
            session.flush()
            if limit and self._live_count(session, user_id, coupon_group_id) > limit:
                raise ExceededUsage(f"limit {limit}", context={"coupon_group_id": coupon_group_id, "limit": limit})
            return coupon

        (coupon,) = await run_sync(UnitOfWork(self._session_factory).stage(op).commit)
        coupon.coupon_group = group
        logger.info(
            "coupon_enrolled",
            extra={"user_id": user_id, "coupon_id": coupon.coupon_id, "coupon_group_id": coupon_group_id},
        )
        return coupon

    # ------------------------------------------------------------------
    # Redemption and maintenance
    # ------------------------------------------------------------------

    async def redeem(self, coupon: Coupon) -> Tuple[Coupon, Dict[str, Any]]:
        """Redeem a coupon loaded with its group. Returns the coupon and its discount properties."""
        group = coupon.coupon_group
        if group is None:
            raise InvalidState("coupon group is not loaded", context={"coupon_id": coupon.coupon_id})

        now = datetime.now(timezone.utc)
        if coupon.expired_at and ensure_utc(coupon.expired_at) < now:
            raise ExpiredCoupon(context={"coupon_id": coupon.coupon_id})

        changes: Dict[str, Any] = {}
        if group.type == CouponGroupType.ONETIME.value and coupon.used_at is None:
            changes["used_at"] = now

        properties = dict(coupon.properties or {})
        if not properties:
            properties = await self._groups.coupon_properties_for_group(group, with_generate=True)
            if properties:
                changes["properties"] = properties

        if changes:
            coupon = await run_sync(self._update, coupon.coupon_id, changes)
        logger.info(
            "coupon_redeemed",
            extra={"coupon_id": coupon.coupon_id, "coupon_group_id": group.coupon_group_id, "generated": "properties" in changes},
        )
        return coupon, properties

    async def modify_coupon(self, coupon: Coupon, request: CouponModifyRequest) -> Coupon:
        changes = request.model_dump(exclude_unset=True)
        if changes.get("coupon_group_id") and changes["coupon_group_id"] != coupon.coupon_group_id:
            await self._groups.get(changes["coupon_group_id"])
        elif "coupon_group_id" in changes and not changes["coupon_group_id"]:
            changes.pop("coupon_group_id")
        if "properties" in changes and changes["properties"] is None:
            changes["properties"] = {}
        return await run_sync(self._update, coupon.coupon_id, changes)

    async def delete_coupon(self, coupon: Coupon) -> None:
        await run_sync(self._delete, coupon.coupon_id)
        logger.info("coupon_deleted", extra={"coupon_id": coupon.coupon_id, "user_id": coupon.user_id})
