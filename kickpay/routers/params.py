"""
Query-string dependencies for list endpoints.

Sort fields may be sent in camelCase (``orderByField=createdAt``) or
snake_case; both resolve to the same column.
"""

from typing import Literal, Optional, get_args

from fastapi import Query
from pydantic.alias_generators import to_snake

from kickpay.core.errors import ValidationError
from kickpay.models.schemas import CouponGroupQuery, CouponQuery, RecordOrderField, RecordQuery

SortDirection = Literal["asc", "desc"]


def _sort_field(value: str, allowed: tuple) -> str:
    field = to_snake(value)
    if field not in allowed:
        raise ValidationError(
            f"orderByField must be one of {', '.join(allowed)}",
            context={"fields": ["orderByField"]},
        )
    return field


def record_query(
    take: int = Query(10, ge=1, le=100),
    skip: int = Query(0, ge=0),
    search: str = Query(""),
    order_by_field: str = Query("created_at", alias="orderByField"),
    order_by_sort: SortDirection = Query("desc", alias="orderBySort"),
    only_unpaid: bool = Query(False, alias="onlyUnpaid"),
    user_id_filter: Optional[str] = Query(None, alias="userId"),
) -> RecordQuery:
    return RecordQuery(
        take=take,
        skip=skip,
        search=search,
        order_by_field=_sort_field(order_by_field, get_args(RecordOrderField)),
        order_by_sort=order_by_sort,
        only_unpaid=only_unpaid,
        user_id=user_id_filter,
    )


def coupon_query(
    take: int = Query(10, ge=1, le=100),
    skip: int = Query(0, ge=0),
    search: str = Query(""),
    show_used: bool = Query(True, alias="showUsed"),
    order_by_field: str = Query("created_at", alias="orderByField"),
    order_by_sort: SortDirection = Query("desc", alias="orderBySort"),
) -> CouponQuery:
    return CouponQuery(
        take=take,
        skip=skip,
        search=search,
        show_used=show_used,
        order_by_field=_sort_field(order_by_field, ("created_at", "used_at", "expired_at")),
        order_by_sort=order_by_sort,
    )


def coupon_group_query(
    take: int = Query(10, ge=1, le=100),
    skip: int = Query(0, ge=0),
    search: str = Query(""),
    order_by_field: str = Query("created_at", alias="orderByField"),
    order_by_sort: SortDirection = Query("desc", alias="orderBySort"),
) -> CouponGroupQuery:
    return CouponGroupQuery(
        take=take,
        skip=skip,
        search=search,
        order_by_field=_sort_field(order_by_field, ("created_at", "name")),
        order_by_sort=order_by_sort,
    )
