from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
from rakhimart.utils.clock import UtcDateTime, utc_now


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    slug: str = Field(index=True)

    price: Decimal = Field(max_digits=10, decimal_places=2)
    stock_quantity: int = 0
    weight_grams: int = 500
    is_active: bool = True

    created_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UtcDateTime)
