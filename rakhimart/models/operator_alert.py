from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from rakhimart.utils.clock import UtcDateTime, utc_now


class AlertKind(str, Enum):
    partial_write = "partial_write"
    email_failed = "email_failed"
    account_provisioning_failed = "account_provisioning_failed"
    inventory_shortfall = "inventory_shortfall"
    payment_session_failed = "payment_session_failed"


class OperatorAlert(SQLModel, table=True):
    __tablename__ = "operator_alert"

    id: Optional[int] = Field(default=None, primary_key=True)

    kind: str = Field(index=True)
    order_number: Optional[str] = Field(default=None, index=True)

    detail: str
    meta: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    resolved: bool = Field(default=False, index=True)
    resolved_at: Optional[datetime] = Field(default=None, sa_type=UtcDateTime)

    created_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
