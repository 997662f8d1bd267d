from sqlmodel import SQLModel, Field , Relationship
from typing import Optional , TYPE_CHECKING
from decimal import Decimal

if TYPE_CHECKING:
    from rakhimart.models.order import Order

class OrderItem(SQLModel, table=True):
    __tablename__ = "order_item"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: str = Field(foreign_key="order.id", index=True)
    product_id: int = Field(foreign_key="product.id")

    product_name: str
    # unit price captured at purchase time
    price: Decimal = Field(max_digits=10, decimal_places=2)
    quantity: int

    order: Optional["Order"] = Relationship(back_populates="items")
