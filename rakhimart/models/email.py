from datetime import datetime
from typing import Optional
from sqlmodel import Field, SQLModel
from sqlalchemy import Column, JSON
from rakhimart.utils.clock import UtcDateTime, utc_now


class EmailLog(SQLModel, table=True):
    __tablename__ = "email_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_number: Optional[str] = Field(default=None, index=True)
    template_kind: str
    to_email: str
    subject: str
    status: str  # sent / failed
    provider: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    # template input, kept so an operator can resend
    template_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
