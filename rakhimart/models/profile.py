from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from rakhimart.utils.clock import UtcDateTime, utc_now


class Profile(SQLModel, table=True):
    # id is the auth provider's user id
    id: str = Field(primary_key=True)
    first_name: str
    last_name: str = ""
    email: str
    phone: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
