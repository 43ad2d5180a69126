"""
Request, query and response schemas shared by services and routers.

Inbound bodies accept camelCase (what the app and the platform send) as well
as snake_case field names.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from kickpay.models.coupon import CouponGroupType

SUCCESS_CODE = "KPY-OK"


class _Inbound(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Outbound(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------

class CardRegisterRequest(_Inbound):
    card_number: str = Field(..., min_length=16, max_length=16, pattern=r"^\d{16}$")
    expiry: str = Field(..., min_length=4)
    password: str = Field(..., min_length=2, max_length=2, pattern=r"^\d{2}$")
    birthday: str = Field(..., min_length=6)


class CardReorderRequest(_Inbound):
    card_ids: List[str]


class CardOut(_Outbound):
    card_id: str
    user_id: str
    card_name: str
    order_by: int
    created_at: datetime
    updated_at: datetime
    billing_key: Optional[str] = None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

RecordOrderField = Literal["amount", "refunded_at", "processed_at", "retired_at", "created_at", "updated_at"]


class RecordQuery(_Inbound):
    take: int = Field(default=10, ge=1, le=100)
    skip: int = Field(default=0, ge=0)
    search: str = ""
    user_id: Optional[str] = None
    order_by_field: RecordOrderField = "created_at"
    order_by_sort: Literal["asc", "desc"] = "desc"
    only_unpaid: bool = False


class RecordCreateRequest(_Inbound):
    amount: int = Field(..., ge=0)
    name: str = Field(..., min_length=1)
    display_name: Optional[str] = None
    description: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    payment_key_id: Optional[str] = None
    card_id: Optional[str] = None
    required: bool = True

    @model_validator(mode="after")
    def _default_display_name(self):
        if not self.display_name:
            self.display_name = self.name
        return self


class RefundRequest(_Inbound):
    reason: Optional[str] = None
    amount: Optional[int] = Field(default=None, gt=0)


class RecordOut(_Outbound):
    record_id: str
    user_id: str
    card_id: Optional[str] = None
    payment_key_id: Optional[str] = None
    amount: int
    initial_amount: int
    tid: Optional[str] = None
    name: str
    display_name: str
    description: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    retired_at: Optional[datetime] = None
    dunned_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Coupon groups
# ---------------------------------------------------------------------------

class OpenApiCouponGroupProperties(_Inbound):
    discount_group_id: str = Field(..., pattern=r"^[0-9a-fA-F-]{36}$")


class CoreServiceCouponGroupProperties(_Inbound):
    day_of_week: Optional[int] = Field(default=None, ge=0, le=127)  # bitmask, Sunday = 1
    period: Optional[int] = Field(default=None, ge=1)  # days
    count: Optional[int] = Field(default=None, ge=1)  # uses per period
    time: Optional[List[Tuple[int, int]]] = None


class CouponGroupProperties(_Inbound):
    openapi: Optional[OpenApiCouponGroupProperties] = None
    coreservice: Optional[CoreServiceCouponGroupProperties] = None

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CouponGroupCreateRequest(_Inbound):
    code: Optional[str] = Field(default=None, min_length=1, max_length=64)
    name: str = Field(..., min_length=2, max_length=16)
    type: CouponGroupType
    validity: Optional[int] = Field(default=None, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)
    abbreviation: Optional[str] = Field(default=None, max_length=32)
    description: str = ""
    properties: CouponGroupProperties = Field(default_factory=CouponGroupProperties)


class CouponGroupModifyRequest(_Inbound):
    code: Optional[str] = Field(default=None, min_length=1, max_length=64)
    name: Optional[str] = Field(default=None, min_length=2, max_length=16)
    type: Optional[CouponGroupType] = None
    validity: Optional[int] = Field(default=None, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)
    abbreviation: Optional[str] = Field(default=None, max_length=32)
    description: Optional[str] = None
    properties: Optional[CouponGroupProperties] = None


class CouponGroupQuery(_Inbound):
    take: int = Field(default=10, ge=1, le=100)
    skip: int = Field(default=0, ge=0)
    search: str = ""
    order_by_field: Literal["created_at", "name"] = "created_at"
    order_by_sort: Literal["asc", "desc"] = "desc"


class CouponGroupOut(_Outbound):
    coupon_group_id: str
    code: Optional[str] = None
    name: str
    type: str
    validity: Optional[int] = None
    limit: Optional[int] = None
    abbreviation: Optional[str] = None
    description: str = ""
    properties: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class CouponGroupSummary(_Outbound):
    coupon_group_id: str
    name: str
    type: str
    validity: Optional[int] = None
    limit: Optional[int] = None
    description: str = ""


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------

class CouponEnrollRequest(_Inbound):
    code: Optional[str] = Field(default=None, min_length=1)
    coupon_group_id: Optional[str] = None

    @model_validator(mode="after")
    def _one_of(self):
        if bool(self.code) == bool(self.coupon_group_id):
            raise ValueError("exactly one of code or couponGroupId is required")
        return self


class CouponModifyRequest(_Inbound):
    coupon_group_id: Optional[str] = None
    used_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    properties: Optional[Dict[str, Any]] = None


class CouponQuery(_Inbound):
    take: int = Field(default=10, ge=1, le=100)
    skip: int = Field(default=0, ge=0)
    search: str = ""
    show_used: bool = True
    order_by_field: Literal["created_at", "used_at", "expired_at"] = "created_at"
    order_by_sort: Literal["asc", "desc"] = "desc"


class CouponOut(_Outbound):
    coupon_id: str
    user_id: str
    coupon_group_id: str
    coupon_group: Optional[CouponGroupSummary] = None
    used_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Direct gateway access (internal)
# ---------------------------------------------------------------------------

class DirectInvokeRequest(_Inbound):
    billing_key: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    realname: str = ""
    phone: str = ""
    product_name: str = Field(default="", max_length=255)
    payment_key_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

class WebhookRide(_Inbound):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    ride_id: str
    kickboard_code: str
    user_id: str
    franchise_id: Optional[str] = None
    discount_id: Optional[str] = None
    started_at: Optional[datetime] = None


class WebhookPaymentData(_Inbound):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    payment_id: str
    description: str = ""
    platform_id: Optional[str] = None
    franchise_id: Optional[str] = None
    payment_type: str = "SERVICE"
    amount: int = Field(..., ge=0)
    ride_id: str
    ride: WebhookRide

    def snapshot(self) -> dict:
        """Platform payment as stored under ``properties.openapi`` (without the ride)."""
        return self.model_dump(mode="json", by_alias=True, exclude={"ride"})


class WebhookPayload(_Inbound):
    request_id: Optional[str] = None
    webhook_id: Optional[str] = None
    data: WebhookPaymentData
    amount: Optional[int] = Field(default=None, gt=0)
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def _blank_reason(cls, v: Optional[str]) -> Optional[str]:
        return v or None


# ---------------------------------------------------------------------------
# Response envelopes
# ---------------------------------------------------------------------------

class OkResponse(BaseModel):
    code: str = SUCCESS_CODE


class CardResponse(OkResponse):
    card: CardOut


class CardListResponse(OkResponse):
    cards: List[CardOut]


class RecordResponse(OkResponse):
    record: RecordOut


class RecordListResponse(OkResponse):
    records: List[RecordOut]
    total: int


class CouponResponse(OkResponse):
    coupon: CouponOut


class CouponListResponse(OkResponse):
    coupons: List[CouponOut]
    total: int


class CouponRedeemResponse(OkResponse):
    coupon: CouponOut
    properties: Dict[str, Any]


class CouponGroupResponse(OkResponse):
    coupon_group: CouponGroupOut


class CouponGroupListResponse(OkResponse):
    coupon_groups: List[CouponGroupOut]
    total: int


class BillingKeyResponse(OkResponse):
    billing_key: str
    card_name: str


class TidResponse(OkResponse):
    tid: str
