"""
Coupon Models
=============

- CouponGroup: platform-owned template (type, validity, per-user limit).
- Coupon: a user's issued coupon.

ONETIME coupons are consumed on first redemption (``used_at``); LONGTIME
coupons stay redeemable until ``expired_at``. ``Coupon.properties.openapi``
holds the external discount reference (``discountGroupId``, ``discountId``,
``expiredAt``).
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, Relationship, SQLModel


class CouponGroupType(str, Enum):
    ONETIME = "ONETIME"
    LONGTIME = "LONGTIME"


class CouponGroup(SQLModel, table=True):
    __tablename__ = "coupon_groups"

    coupon_group_id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=36)
    code: Optional[str] = Field(default=None, nullable=True, unique=True, max_length=64)
    name: str = Field(unique=True, max_length=16)
    type: str = Field(max_length=16)
    validity: Optional[int] = Field(default=None, nullable=True)  # seconds
    limit: Optional[int] = Field(default=None, nullable=True)
    abbreviation: Optional[str] = Field(default=None, nullable=True, max_length=32)
    description: str = Field(default="", max_length=255)
    properties: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    deleted_at: Optional[datetime] = Field(default=None, nullable=True)


class Coupon(SQLModel, table=True):
    __tablename__ = "coupons"

    coupon_id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=36)
    user_id: str = Field(index=True, max_length=36)
    coupon_group_id: str = Field(foreign_key="coupon_groups.coupon_group_id", index=True, max_length=36)
    properties: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    used_at: Optional[datetime] = Field(default=None, nullable=True)
    expired_at: Optional[datetime] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    deleted_at: Optional[datetime] = Field(default=None, nullable=True)

    # Only populated when explicitly loaded (selectinload)
    coupon_group: Optional[CouponGroup] = Relationship(sa_relationship_kwargs={"lazy": "noload"})
