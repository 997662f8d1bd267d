"""
Order state machine.

Pure transition rules: given the current state of an order and an event,
``decide`` returns the columns to write, the guard the write must be
conditioned on, and the notification to send once the write commits.
Nothing here touches the database or the network.

    pending    -> confirmed | cancelled
    confirmed  -> processing | shipped | cancelled
    processing -> shipped | cancelled
    shipped    -> delivered
    delivered, cancelled: terminal
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, Optional

from rakhimart.constants.order_status import (
    ALLOWED_TRANSITIONS,
    REQUIRES_PAYMENT,
    SHIPPABLE,
    OrderStatus,
    PaymentStatus,
)
from rakhimart.exceptions import InvalidTransition
from rakhimart.notifications.events import NotificationKind


@dataclass(frozen=True)
class OrderState:
    status: OrderStatus
    payment_status: PaymentStatus
    tracking_number: Optional[str] = None

    @classmethod
    def of(cls, order) -> "OrderState":
        return cls(
            status=OrderStatus(order.status),
            payment_status=PaymentStatus(order.payment_status),
            tracking_number=order.tracking_number,
        )


# ---------- EVENTS ----------

@dataclass(frozen=True)
class PaymentSucceeded:
    name: ClassVar[str] = "payment_succeeded"
    order_number: str
    payment_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentFailed:
    name: ClassVar[str] = "payment_failed"
    order_number: str
    payment_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentDropped:
    name: ClassVar[str] = "payment_dropped"
    order_number: str


@dataclass(frozen=True)
class AdminSetStatus:
    name: ClassVar[str] = "admin_set_status"
    order_id: str
    new_status: OrderStatus


@dataclass(frozen=True)
class ShipmentCreated:
    name: ClassVar[str] = "shipment_created"
    order_id: str
    tracking_number: str
    partner: str
    eta: Optional[str] = None
    awb_number: Optional[str] = None


@dataclass(frozen=True)
class ShipmentDelivered:
    name: ClassVar[str] = "shipment_delivered"
    order_id: str


PAYMENT_EVENTS = (PaymentSucceeded, PaymentFailed, PaymentDropped)


@dataclass
class Decision:
    event: str
    changes: dict = field(default_factory=dict)
    guard: dict = field(default_factory=dict)
    notification: Optional[NotificationKind] = None
    noop: bool = False
    reason: str = ""


def _noop(event, reason: str) -> Decision:
    return Decision(event=event.name, noop=True, reason=reason)


def _guard(state: OrderState) -> dict:
    return {
        "status": state.status.value,
        "payment_status": state.payment_status.value,
    }


def decide(state: OrderState, event, now: Optional[datetime] = None) -> Decision:
    now = now or datetime.now(timezone.utc)

    if isinstance(event, PAYMENT_EVENTS):
        return _decide_payment(state, event)
    if isinstance(event, AdminSetStatus):
        return _decide_admin(state, event, now)
    if isinstance(event, ShipmentCreated):
        return _decide_shipment(state, event, now)
    if isinstance(event, ShipmentDelivered):
        return _decide_delivered(state, event, now)

    raise TypeError(f"Unknown order event {event!r}")


def _decide_payment(state: OrderState, event) -> Decision:
    # redelivered or out-of-order gateway events land here
    if state.status != OrderStatus.pending:
        return _noop(event, f"order already {state.status.value}")

    if isinstance(event, PaymentSucceeded):
        changes = {
            "status": OrderStatus.confirmed.value,
            "payment_status": PaymentStatus.completed.value,
            "payment_id": event.payment_id,
        }
        notification = NotificationKind.ORDER_CONFIRMATION
    elif isinstance(event, PaymentFailed):
        changes = {
            "status": OrderStatus.cancelled.value,
            "payment_status": PaymentStatus.failed.value,
            "payment_id": event.payment_id,
        }
        notification = None
    else:
        changes = {
            "status": OrderStatus.cancelled.value,
            "payment_status": PaymentStatus.cancelled.value,
        }
        notification = None

    return Decision(
        event=event.name,
        changes=changes,
        guard=_guard(state),
        notification=notification,
    )


def _decide_admin(state: OrderState, event: AdminSetStatus, now: datetime) -> Decision:
    target = OrderStatus(event.new_status)

    if target == state.status:
        return _noop(event, f"order already {target.value}")

    if target not in ALLOWED_TRANSITIONS[state.status]:
        raise InvalidTransition(state.status.value, target.value)

    if target in REQUIRES_PAYMENT and state.payment_status != PaymentStatus.completed:
        raise InvalidTransition(
            state.status.value,
            target.value,
            f"payment is {state.payment_status.value}",
        )

    changes = {"status": target.value}
    notification = None

    if target == OrderStatus.shipped:
        changes["shipped_at"] = now
    elif target == OrderStatus.delivered:
        changes["delivered_at"] = now
        notification = NotificationKind.DELIVERY_CONFIRMATION

    return Decision(
        event=event.name,
        changes=changes,
        guard=_guard(state),
        notification=notification,
    )


def _decide_shipment(state: OrderState, event: ShipmentCreated, now: datetime) -> Decision:
    target = OrderStatus.shipped.value

    if state.payment_status != PaymentStatus.completed:
        raise InvalidTransition(
            state.status.value, target, f"payment is {state.payment_status.value}"
        )

    tracking = {
        "tracking_number": event.tracking_number,
        "awb_number": event.awb_number or event.tracking_number,
        "delivery_partner": event.partner,
        "estimated_delivery": event.eta,
    }
    guard = {**_guard(state), "tracking_number": state.tracking_number}

    if state.status in SHIPPABLE:
        return Decision(
            event=event.name,
            changes={"status": target, "shipped_at": now, **tracking},
            guard=guard,
            notification=NotificationKind.SHIPPING_NOTIFICATION,
        )

    if state.status == OrderStatus.shipped:
        if event.tracking_number == state.tracking_number:
            return _noop(event, f"tracking {event.tracking_number} already attached")

        return Decision(
            event=event.name,
            changes=tracking,
            guard=guard,
            notification=NotificationKind.SHIPPING_NOTIFICATION,
        )

    raise InvalidTransition(state.status.value, target)


def _decide_delivered(state: OrderState, event: ShipmentDelivered, now: datetime) -> Decision:
    if state.status == OrderStatus.delivered:
        return _noop(event, "order already delivered")

    if state.status != OrderStatus.shipped:
        raise InvalidTransition(state.status.value, OrderStatus.delivered.value)

    return Decision(
        event=event.name,
        changes={"status": OrderStatus.delivered.value, "delivered_at": now},
        guard=_guard(state),
        notification=NotificationKind.DELIVERY_CONFIRMATION,
    )


def can_follow(earlier: OrderStatus, later: OrderStatus) -> bool:
    """True when ``later`` is ``earlier`` or reachable from it."""
    earlier, later = OrderStatus(earlier), OrderStatus(later)
    seen = {earlier}
    frontier = [earlier]

    while frontier:
        current = frontier.pop()
        for nxt in ALLOWED_TRANSITIONS[current]:
            if nxt not in seen:
                seen.add(nxt)
                frontier.append(nxt)

    return later in seen


_RANK = {
    OrderStatus.pending: 0,
    OrderStatus.confirmed: 1,
    OrderStatus.processing: 2,
    OrderStatus.shipped: 3,
    OrderStatus.delivered: 4,
    OrderStatus.cancelled: 4,
}


def status_rank(status: OrderStatus) -> int:
    """Depth in the transition graph; never decreases over an order's life."""
    return _RANK[OrderStatus(status)]
