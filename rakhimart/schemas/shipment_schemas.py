from typing import Optional

from pydantic import BaseModel, Field

from rakhimart.constants.order_status import OrderStatus


class StatusUpdate(BaseModel):
    status: OrderStatus


class TrackingAttach(BaseModel):
    """Manual shipping: the parcel was booked outside the courier integrations."""

    tracking_number: str = Field(..., min_length=3, max_length=64)
    delivery_partner: str = Field(..., min_length=2)
    awb_number: Optional[str] = None
    estimated_delivery: Optional[str] = None


class ShipmentCreate(BaseModel):
    # defaults to the store's configured courier
    delivery_partner: Optional[str] = None
