"""
User as served by the accounts service. Not persisted here.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class User(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    user_id: str
    realname: str = ""
    phone_no: str = ""
    birthday: Optional[datetime] = None
    email: Optional[str] = None
    profile_url: Optional[str] = None
    license_id: Optional[str] = None
    level_no: int = 0
    receive_sms: Optional[datetime] = Field(default=None, alias="receiveSMS")
    receive_push: Optional[datetime] = None
    receive_email: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
