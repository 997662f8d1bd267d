import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import String, cast, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from rakhimart.models.operator_alert import AlertKind
from rakhimart.models.order import Order
from rakhimart.models.order_item import OrderItem
from rakhimart.services.notification_service import create_operator_alert
from rakhimart.services.order_feed import OrderFeed, order_feed
from rakhimart.utils.pagination import paginate

logger = logging.getLogger(__name__)


class OrderRepository:
    """
    Persistence for the Order/OrderItem aggregate.

    After creation, order state only changes through ``update_if``: a single
    UPDATE whose WHERE clause carries the state the caller read. A caller
    that lost a race affects zero rows and gets ``False`` back instead of
    overwriting a newer state.
    """

    def __init__(self, session: Session, feed: OrderFeed = order_feed):
        self.session = session
        self.feed = feed

    # ---------- CREATE ----------

    def create(self, order: Order, items: List[OrderItem]) -> Tuple[Order, bool]:
        """
        Insert the order, then its items.

        Returns ``(order, items_written)``. When the items fail after the
        order committed, the order is still returned and the failure goes to
        the operator queue.
        """
        self.session.add(order)
        self.session.commit()
        self.session.refresh(order)

        try:
            self._insert_items(order, items)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"Order items failed for {order.order_number}: {exc}")
            create_operator_alert(
                session=self.session,
                kind=AlertKind.partial_write,
                order_number=order.order_number,
                detail=f"Order {order.order_number} created but its items were not saved",
                meta={
                    "error": str(exc),
                    "items": [
                        {
                            "product_id": i.product_id,
                            "quantity": i.quantity,
                            "price": str(i.price),
                        }
                        for i in items
                    ],
                },
            )
            self.session.refresh(order)
            self.feed.publish(order)
            return order, False

        self.session.refresh(order)
        self.feed.publish(order)
        logger.info(f"Order {order.order_number} created with {len(items)} items")
        return order, True

    def _insert_items(self, order: Order, items: List[OrderItem]):
        for item in items:
            item.order_id = order.id
            self.session.add(item)
        self.session.commit()

    # ---------- READ ----------

    def get_by_id(self, order_id: str) -> Optional[Order]:
        return self.session.get(Order, order_id)

    def get_by_number(self, order_number: str) -> Optional[Order]:
        return self.session.exec(
            select(Order).where(Order.order_number == order_number)
        ).first()

    def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        return self.session.exec(
            select(Order).where(Order.gateway_order_id == gateway_order_id)
        ).first()

    def items_for(self, order_id: str) -> List[OrderItem]:
        return self.session.exec(
            select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
        ).all()

    def list_for_user(self, user_id: str) -> List[Order]:
        return self.session.exec(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
        ).all()

    def list(
        self,
        *,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        serialize=None,
    ) -> dict:
        query = select(Order)

        if status:
            query = query.where(Order.status == status)

        if search:
            like = f"%{search}%"
            query = query.where(
                or_(
                    Order.order_number.ilike(like),
                    Order.customer_name.ilike(like),
                    Order.customer_email.ilike(like),
                    cast(Order.tracking_number, String).ilike(like),
                )
            )

        query = query.order_by(Order.created_at.desc())
        return paginate(
            session=self.session, query=query, page=page, limit=limit, serialize=serialize
        )

    # ---------- CONDITIONAL WRITES ----------

    def update_if(self, order_id: str, expected: dict, changes: dict) -> bool:
        """
        ``UPDATE order SET <changes> WHERE id = :id AND <expected>``.

        ``None`` in ``expected`` matches SQL NULL. Returns whether the row
        was updated; ``updated_at`` is bumped on every successful write.
        """
        table = Order.__table__
        statement = update(table).where(table.c.id == order_id)

        for column, value in expected.items():
            col = table.c[column]
            statement = statement.where(col.is_(None) if value is None else col == value)

        values = {**changes, "updated_at": datetime.now(timezone.utc)}
        result = self.session.connection().execute(statement.values(**values))

        if result.rowcount != 1:
            self.session.rollback()
            return False

        self.session.commit()

        order = self.get_by_id(order_id)
        if order is not None:
            self.session.refresh(order)
            self.feed.publish(order)

        return True

    def set_payment_session(
        self,
        order_id: str,
        *,
        provider: str,
        gateway_order_id: Optional[str],
        payment_session_id: Optional[str],
    ) -> bool:
        # the latest session replaces any earlier one; only pending orders take one
        return self.update_if(
            order_id,
            {"status": "pending"},
            {
                "payment_provider": provider,
                "gateway_order_id": gateway_order_id,
                "payment_session_id": payment_session_id,
            },
        )
