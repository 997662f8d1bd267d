from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class ShippingAddress(BaseModel):
    name: str
    phone: str
    address_line_1: str
    address_line_2: Optional[str] = None
    city: str
    state: str
    postal_code: str = Field(..., min_length=4, max_length=10)
    country: str = "India"


class CustomerDetails(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = ""
    email: EmailStr
    phone: str = Field(..., min_length=6, max_length=20)
    # guests who give a password get an account created at checkout
    password: Optional[str] = Field(None, min_length=6)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class CartLine(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)


class CheckoutRequest(BaseModel):
    items: List[CartLine] = Field(..., min_length=1)
    customer: CustomerDetails
    shipping_address: ShippingAddress


class QuoteRequest(BaseModel):
    items: List[CartLine] = Field(..., min_length=1)


class QuoteLine(BaseModel):
    product_id: int
    product_name: str
    price: Decimal
    quantity: int
    line_total: Decimal


class CheckoutQuote(BaseModel):
    items: List[QuoteLine]
    subtotal: Decimal
    shipping_charge: Decimal
    total_amount: Decimal
    free_delivery_threshold: Decimal


class PaymentSessionOut(BaseModel):
    provider: str
    gateway_order_id: str
    payment_session_id: Optional[str] = None
    amount: str
    currency: str
    key_id: Optional[str] = None


class CheckoutResponse(BaseModel):
    order_id: str
    order_number: str
    status: str
    payment_status: str
    subtotal: Decimal
    shipping_charge: Decimal
    total_amount: Decimal
    items_saved: bool
    payment_session: Optional[PaymentSessionOut] = None
    payment_error: Optional[str] = None
    payment_retryable: bool = False
