"""
Dunning Model
=============

Append-only escalation log. Exactly one of the three record references is
set per row, naming the channel (retry, call, message).
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


class DunningChannel(str, Enum):
    RETRY = "retry"
    CALL = "call"
    MESSAGE = "message"


CHANNEL_COLUMNS = {
    DunningChannel.RETRY: "record_retry_id",
    DunningChannel.CALL: "record_call_id",
    DunningChannel.MESSAGE: "record_message_id",
}


class Dunning(SQLModel, table=True):
    __tablename__ = "dunnings"

    dunning_id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=36)
    record_retry_id: Optional[str] = Field(default=None, nullable=True, foreign_key="records.record_id", index=True)
    record_call_id: Optional[str] = Field(default=None, nullable=True, foreign_key="records.record_id", index=True)
    record_message_id: Optional[str] = Field(default=None, nullable=True, foreign_key="records.record_id", index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
