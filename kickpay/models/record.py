"""
Record Model
============

One billing attempt and its refund history.

- ``amount`` is the currently owed/refundable balance; ``initial_amount``
  is fixed at creation.
- ``processed_at`` is set exactly when some card was charged (``tid``).
- ``refunded_at`` is set on the first refund and refreshed on later ones.
- ``retired_at`` marks the latest charge attempt, ``dunned_at`` the latest
  dunning escalation.

``properties`` carries the platform snapshot under ``openapi`` (including
``paymentId`` and ``rideId``) and core-service references under
``coreservice``.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column, Text
from sqlmodel import Field, SQLModel


class Record(SQLModel, table=True):
    __tablename__ = "records"

    record_id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=36)
    user_id: str = Field(index=True, max_length=36)
    card_id: Optional[str] = Field(default=None, nullable=True, max_length=36)
    payment_key_id: Optional[str] = Field(default=None, nullable=True, max_length=36)
    amount: int
    initial_amount: int
    tid: Optional[str] = Field(default=None, nullable=True, max_length=64)
    name: str = Field(max_length=255)
    display_name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    properties: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    reason: Optional[str] = Field(default=None, nullable=True, max_length=255)
    processed_at: Optional[datetime] = Field(default=None, nullable=True, index=True)
    refunded_at: Optional[datetime] = Field(default=None, nullable=True)
    retired_at: Optional[datetime] = Field(default=None, nullable=True)
    dunned_at: Optional[datetime] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def openapi(self) -> dict:
        return (self.properties or {}).get("openapi") or {}
