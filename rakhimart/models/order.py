from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from rakhimart.constants.order_status import OrderStatus, PaymentStatus
from rakhimart.models.order_item import OrderItem
from rakhimart.utils.clock import UtcDateTime, utc_now


class Order(SQLModel, table=True):
    __tablename__ = "order"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    order_number: str = Field(unique=True, index=True)

    # nullable: guest checkout
    user_id: Optional[str] = Field(default=None, index=True)

    # contact snapshot used for notifications
    customer_name: str
    customer_email: str
    customer_phone: str

    status: str = Field(default=OrderStatus.pending.value, index=True)
    payment_status: str = Field(default=PaymentStatus.pending.value)

    payment_id: Optional[str] = None
    payment_provider: Optional[str] = None
    gateway_order_id: Optional[str] = Field(default=None, index=True)
    payment_session_id: Optional[str] = None

    subtotal: Decimal = Field(max_digits=10, decimal_places=2)
    shipping_charge: Decimal = Field(max_digits=10, decimal_places=2)
    total_amount: Decimal = Field(max_digits=10, decimal_places=2)
    currency: str = Field(default="INR")

    # copied at checkout, never a live reference
    shipping_address: dict = Field(sa_column=Column(JSON, nullable=False))

    tracking_number: Optional[str] = None
    awb_number: Optional[str] = None
    delivery_partner: Optional[str] = None
    estimated_delivery: Optional[str] = None
    shipped_at: Optional[datetime] = Field(default=None, sa_type=UtcDateTime)
    delivered_at: Optional[datetime] = Field(default=None, sa_type=UtcDateTime)

    created_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)

    items: List["OrderItem"] = Relationship(back_populates="order")
