"""
PaymentKey Model
================

Merchant credential for the card billing gateway. Exactly one row is
``primary``; it is the master merchant on every charge and the default for
records without an explicit key. ``franchise_id`` maps a platform franchise
onto its sub-merchant.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class PaymentKey(SQLModel, table=True):
    __tablename__ = "payment_keys"

    payment_key_id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=36)
    name: str = Field(default="", max_length=64)
    identity: str = Field(max_length=64)
    secret_key: str = Field(max_length=255)
    primary: bool = Field(default=False, index=True)
    franchise_id: Optional[str] = Field(default=None, nullable=True, index=True, max_length=36)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
