import logging
from typing import List

from sqlalchemy import update
from sqlmodel import Session

from rakhimart.models.order_item import OrderItem
from rakhimart.models.product import Product

logger = logging.getLogger(__name__)


def reduce_inventory(session: Session, items: List[OrderItem]) -> List[dict]:
    """
    Take purchased quantities out of stock once payment is confirmed.

    Each decrement is conditional on enough stock remaining; lines that
    cannot be covered are returned as shortfalls instead of failing the
    payment that already happened.
    """
    table = Product.__table__
    shortfalls = []

    for item in items:
        result = session.connection().execute(
            update(table)
            .where(table.c.id == item.product_id)
            .where(table.c.stock_quantity >= item.quantity)
            .values(stock_quantity=table.c.stock_quantity - item.quantity)
        )

        if result.rowcount != 1:
            product = session.get(Product, item.product_id)
            shortfalls.append({
                "product_id": item.product_id,
                "requested": item.quantity,
                "available": product.stock_quantity if product else None,
            })
            logger.warning(f"Insufficient stock for product {item.product_id}: wanted {item.quantity}")
        else:
            logger.info(f"Reduced stock of product {item.product_id} by {item.quantity}")

    session.commit()
    return shortfalls
