from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class DeliveryChargesUpdate(BaseModel):
    flat_delivery_charge: Decimal = Field(..., ge=0)
    free_delivery_threshold: Decimal = Field(..., ge=0)


class PickupAddressIn(BaseModel):
    name: str
    phone: str
    address: str
    city: str
    state: str
    pincode: str
    country: str = "India"


class ShippingSettingsUpdate(BaseModel):
    provider: Optional[str] = None
    pickup_address: Optional[PickupAddressIn] = None
