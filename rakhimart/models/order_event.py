from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from rakhimart.utils.clock import UtcDateTime, utc_now


class OrderEvent(SQLModel, table=True):
    """One row per applied transition; never updated."""

    __tablename__ = "order_event"
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)

    order_id: str = Field(foreign_key="order.id", index=True)
    event_type: str = Field(index=True)
    from_status: Optional[str] = None
    to_status: Optional[str] = None

    label: str
    # the column values written by the transition
    meta: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
    # "system", "webhook:cashfree", "admin:<user id>", ...
    created_by: str = Field(default="system")
