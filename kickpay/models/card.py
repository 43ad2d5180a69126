"""
Card Model
==========

A user's stored payment card. ``billing_key`` holds the gateway billing
token encrypted at rest (see kickpay.core.token_crypto); it is never part
of the default API projection.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class Card(SQLModel, table=True):
    __tablename__ = "cards"
    __table_args__ = (UniqueConstraint("user_id", "card_name", name="uq_cards_user_card_name"),)

    card_id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=36)
    user_id: str = Field(index=True, max_length=36)
    billing_key: str = Field(sa_column=Column(Text, nullable=False))
    card_name: str = Field(max_length=128)
    order_by: int = Field(default=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    deleted_at: Optional[datetime] = Field(default=None, nullable=True)
