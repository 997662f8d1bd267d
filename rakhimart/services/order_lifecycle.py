import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import Session

from rakhimart.constants.order_status import OrderStatus
from rakhimart.exceptions import OrderNotFound
from rakhimart.models.operator_alert import AlertKind
from rakhimart.models.order import Order
from rakhimart.notifications.dispatcher import PendingNotification
from rakhimart.repositories.order_repository import OrderRepository
from rakhimart.services.inventory_service import reduce_inventory
from rakhimart.services.notification_service import create_operator_alert
from rakhimart.services.order_event_service import log_order_event
from rakhimart.services.order_feed import OrderFeed, order_feed
from rakhimart.services.order_state_machine import (
    PAYMENT_EVENTS,
    AdminSetStatus,
    Decision,
    OrderState,
    PaymentDropped,
    PaymentFailed,
    PaymentSucceeded,
    ShipmentCreated,
    ShipmentDelivered,
    decide,
)

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    order: Order
    applied: bool
    decision: Decision
    notification: Optional[PendingNotification] = None


def _event_label(event) -> str:
    if isinstance(event, PaymentSucceeded):
        return "Payment received"
    if isinstance(event, PaymentFailed):
        return "Payment failed"
    if isinstance(event, PaymentDropped):
        return "Payment abandoned"
    if isinstance(event, AdminSetStatus):
        return f"Status changed to {OrderStatus(event.new_status).value}"
    if isinstance(event, ShipmentCreated):
        return f"Shipped via {event.partner} ({event.tracking_number})"
    if isinstance(event, ShipmentDelivered):
        return "Delivered"
    return event.name


def _json_safe(changes: dict) -> dict:
    safe = {}
    for key, value in changes.items():
        if isinstance(value, (datetime, date)):
            safe[key] = value.isoformat()
        elif isinstance(value, Decimal):
            safe[key] = str(value)
        else:
            safe[key] = value
    return safe


class OrderLifecycle:
    """
    Applies order events.

    Every event goes through the same path: read the order, let the state
    machine decide, then write with ``update_if`` guarded on the state that
    was read. A write that loses a race is a no-op for the caller, never an
    error and never a second notification.
    """

    def __init__(self, session: Session, feed: OrderFeed = order_feed):
        self.session = session
        self.repo = OrderRepository(session, feed)

    def load(self, event) -> Order:
        if isinstance(event, PAYMENT_EVENTS):
            order = self.repo.get_by_number(event.order_number)
            reference = event.order_number
        else:
            order = self.repo.get_by_id(event.order_id)
            reference = event.order_id

        if not order:
            raise OrderNotFound(reference)
        return order

    def apply(self, event, actor: str = "system") -> TransitionResult:
        order = self.load(event)

        for _ in range(2):
            decision = decide(OrderState.of(order), event)
            from_status = order.status

            if decision.noop:
                logger.info(f"{event.name} on {order.order_number} ignored: {decision.reason}")
                return TransitionResult(order=order, applied=False, decision=decision)

            if self.repo.update_if(order.id, decision.guard, decision.changes):
                break

            self.session.refresh(order)
            logger.info(
                f"{event.name} on {order.order_number} lost a concurrent update; "
                f"order is now {order.status}/{order.payment_status}"
            )
        else:
            decision.noop = True
            decision.reason = "superseded by a concurrent update"
            return TransitionResult(order=order, applied=False, decision=decision)

        self.session.refresh(order)

        log_order_event(
            self.session,
            order.id,
            event_type=event.name,
            label=_event_label(event),
            created_by=actor,
            meta=_json_safe(decision.changes),
            from_status=from_status,
            to_status=order.status,
        )
        self.session.commit()

        if isinstance(event, PaymentSucceeded):
            self._take_stock(order)

        logger.info(f"{event.name} applied to {order.order_number}: now {order.status}")

        notification = None
        if decision.notification:
            notification = PendingNotification(
                kind=decision.notification,
                order_id=order.id,
                order_number=order.order_number,
            )

        return TransitionResult(
            order=order,
            applied=True,
            decision=decision,
            notification=notification,
        )

    def _take_stock(self, order: Order):
        shortfalls = reduce_inventory(self.session, self.repo.items_for(order.id))
        if shortfalls:
            create_operator_alert(
                session=self.session,
                kind=AlertKind.inventory_shortfall,
                order_number=order.order_number,
                detail=f"Paid order {order.order_number} exceeds available stock",
                meta={"shortfalls": shortfalls},
            )
        self.session.refresh(order)
