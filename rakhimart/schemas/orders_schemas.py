from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    product_name: str
    price: Decimal
    quantity: int


class OrderSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_number: str
    status: str
    payment_status: str
    total_amount: Decimal
    customer_name: str
    customer_email: str
    tracking_number: Optional[str] = None
    delivery_partner: Optional[str] = None
    created_at: datetime


class OrderOut(OrderSummaryOut):
    user_id: Optional[str] = None
    customer_phone: str
    subtotal: Decimal
    shipping_charge: Decimal
    currency: str
    shipping_address: dict
    payment_id: Optional[str] = None
    payment_provider: Optional[str] = None
    awb_number: Optional[str] = None
    estimated_delivery: Optional[str] = None
    tracking_url: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    updated_at: datetime
    items: List[OrderItemOut] = []


class TrackingOut(BaseModel):
    order_number: str
    status: str
    delivery_partner: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    courier_status: Optional[str] = None
    location: Optional[str] = None
    estimated_delivery: Optional[str] = None
    tracking_error: Optional[str] = None


class OrderEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_type: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    label: str
    created_by: Optional[str] = None
    meta: Optional[dict] = None
    created_at: datetime
