"""
Coupon groups: platform-owned coupon templates.

``name`` is globally unique, ``code`` too when present. When a group
references a platform discount group (``properties.openapi``), that
reference is checked against the platform before anything is written.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from kickpay.core.async_utils import run_sync
from kickpay.core.errors import (
    CouponGroupNotFound,
    DuplicateCouponGroupCode,
    DuplicateCouponGroupName,
)
from kickpay.core.unit_of_work import UnitOfWork
from kickpay.models.coupon import Coupon, CouponGroup
from kickpay.models.schemas import (
    CouponGroupCreateRequest,
    CouponGroupModifyRequest,
    CouponGroupProperties,
    CouponGroupQuery,
)
from kickpay.services.coreservice_client import PlatformClient

logger = logging.getLogger(__name__)


class CouponGroupService:
    def __init__(self, session_factory: Callable, platform: PlatformClient):
        self._session_factory = session_factory
        self._platform = platform

    # ------------------------------------------------------------------
    # Sync DB helpers
    # ------------------------------------------------------------------

    def _find(self, **filters) -> Optional[CouponGroup]:
        with self._session_factory() as session:
            stmt = select(CouponGroup)
            for key, value in filters.items():
                stmt = stmt.where(getattr(CouponGroup, key) == value)
            return session.exec(stmt).first()

    def _exists(self, column: str, value: str, exclude_id: Optional[str] = None) -> bool:
        with self._session_factory() as session:
            stmt = select(func.count()).select_from(CouponGroup).where(getattr(CouponGroup, column) == value)
            if exclude_id:
                stmt = stmt.where(CouponGroup.coupon_group_id != exclude_id)
            return session.exec(stmt).one() > 0

    def _save(self, group: CouponGroup) -> CouponGroup:
        with self._session_factory() as session:
            session.add(group)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                if group.code and self._exists("code", group.code, group.coupon_group_id):
                    raise DuplicateCouponGroupCode(context={"code": group.code}) from exc
                raise DuplicateCouponGroupName(context={"name": group.name}) from exc
            session.refresh(group)
            return group

    def _search(self, query: CouponGroupQuery) -> Tuple[List[CouponGroup], int]:
        conditions = []
        if query.search:
            s = query.search
            conditions.append(
                or_(
                    CouponGroup.coupon_group_id == s,
                    CouponGroup.name.contains(s),  # type: ignore[attr-defined]
                    CouponGroup.description.contains(s),  # type: ignore[attr-defined]
                )
            )
        column = getattr(CouponGroup, query.order_by_field)
        ordering = column.asc() if query.order_by_sort == "asc" else column.desc()
        with self._session_factory() as session:
            total = session.exec(select(func.count()).select_from(CouponGroup).where(*conditions)).one()
            groups = session.exec(
                select(CouponGroup).where(*conditions).order_by(ordering).offset(query.skip).limit(query.take)
            ).all()
        return list(groups), total

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def _ensure_unused_name(self, name: str, exclude_id: Optional[str] = None) -> None:
        if await run_sync(self._exists, "name", name, exclude_id):
            raise DuplicateCouponGroupName(context={"name": name})

    async def _ensure_unused_code(self, code: str, exclude_id: Optional[str] = None) -> None:
        if await run_sync(self._exists, "code", code, exclude_id):
            raise DuplicateCouponGroupCode(context={"code": code})

    async def _ensure_discount_group(self, properties: Optional[CouponGroupProperties]) -> None:
        if properties is None or properties.openapi is None:
            return
        # Raises DiscountProviderError when the platform does not know the group
        await self._platform.get_discount_group(properties.openapi.discount_group_id)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, coupon_group_id: str) -> CouponGroup:
        group = await run_sync(self._find, coupon_group_id=coupon_group_id)
        if group is None:
            raise CouponGroupNotFound(context={"coupon_group_id": coupon_group_id})
        return group

    async def get_by_code(self, code: str) -> CouponGroup:
        group = await run_sync(self._find, code=code)
        if group is None:
            raise CouponGroupNotFound(context={"code": code})
        return group

    async def list(self, query: CouponGroupQuery) -> Tuple[List[CouponGroup], int]:
        return await run_sync(self._search, query)

    async def create(self, request: CouponGroupCreateRequest) -> CouponGroup:
        await self._ensure_unused_name(request.name)
        if request.code:
            await self._ensure_unused_code(request.code)
        await self._ensure_discount_group(request.properties)

        group = CouponGroup(
            code=request.code,
            name=request.name,
            type=request.type.value,
            validity=request.validity,
            limit=request.limit,
            abbreviation=request.abbreviation,
            description=request.description,
            properties=request.properties.to_json(),
        )
        group = await run_sync(self._save, group)
        logger.info("coupon_group_created", extra={"coupon_group_id": group.coupon_group_id, "type": group.type})
        return group

    async def modify(self, group: CouponGroup, request: CouponGroupModifyRequest) -> CouponGroup:
        """Apply the fields that were sent. Uniqueness is re-checked only on change."""
        changes = request.model_dump(exclude_unset=True)
        for required in ("name", "type", "description"):
            if changes.get(required) is None:
                changes.pop(required, None)
        if changes.get("name") and changes["name"] != group.name:
            await self._ensure_unused_name(changes["name"], group.coupon_group_id)
        if changes.get("code") and changes["code"] != group.code:
            await self._ensure_unused_code(changes["code"], group.coupon_group_id)
        if "properties" in changes:
            await self._ensure_discount_group(request.properties)
            changes["properties"] = request.properties.to_json() if request.properties else {}
        if "type" in changes:
            changes["type"] = request.type.value

        for key, value in changes.items():
            setattr(group, key, value)
        group.updated_at = datetime.now(timezone.utc)
        group = await run_sync(self._save, group)
        logger.info("coupon_group_modified", extra={"coupon_group_id": group.coupon_group_id, "fields": sorted(changes)})
        return group

    async def delete(self, group: CouponGroup) -> None:
        """Delete the group together with every coupon issued from it."""
        coupon_group_id = group.coupon_group_id

        def delete_coupons(session: Session) -> int:
            coupons = session.exec(select(Coupon).where(Coupon.coupon_group_id == coupon_group_id)).all()
            for coupon in coupons:
                session.delete(coupon)
            return len(coupons)

        def delete_group(session: Session) -> None:
            row = session.get(CouponGroup, coupon_group_id)
            if row is not None:
                session.delete(row)

        await run_sync(UnitOfWork(self._session_factory).stage(delete_coupons).stage(delete_group).commit)
        logger.info("coupon_group_deleted", extra={"coupon_group_id": coupon_group_id})

    async def coupon_properties_for_group(self, group: CouponGroup, with_generate: bool) -> dict:
        """Coupon ``properties`` for a group; issues a platform discount when asked."""
        properties: dict = {}
        openapi = (group.properties or {}).get("openapi")
        if not with_generate or not openapi:
            return properties

        discount_group_id = openapi["discountGroupId"]
        discount = await self._platform.generate_discount(discount_group_id)
        properties["openapi"] = {
            "discountGroupId": discount_group_id,
            "discountId": discount["discountId"],
            "expiredAt": discount.get("expiredAt"),
        }
        return properties
