from datetime import datetime, timezone

import pytest

from rakhimart.constants.order_status import ALLOWED_TRANSITIONS, TERMINAL, OrderStatus, PaymentStatus
from rakhimart.exceptions import InvalidTransition
from rakhimart.notifications.events import NotificationKind
from rakhimart.services.order_state_machine import (
    AdminSetStatus,
    OrderState,
    PaymentDropped,
    PaymentFailed,
    PaymentSucceeded,
    ShipmentCreated,
    ShipmentDelivered,
    can_follow,
    decide,
    status_rank,
)

NOW = datetime(2026, 10, 19, 10, 30, tzinfo=timezone.utc)


def state(status, payment="pending", tracking=None):
    return OrderState(OrderStatus(status), PaymentStatus(payment), tracking)


def test_payment_success_confirms_pending_order():
    decision = decide(state("pending"), PaymentSucceeded("RM-1", payment_id="pay_1"))

    assert not decision.noop
    assert decision.changes == {
        "status": "confirmed",
        "payment_status": "completed",
        "payment_id": "pay_1",
    }
    assert decision.guard == {"status": "pending", "payment_status": "pending"}
    assert decision.notification == NotificationKind.ORDER_CONFIRMATION


def test_payment_failure_cancels_without_email():
    decision = decide(state("pending"), PaymentFailed("RM-1", payment_id="pay_2"))

    assert decision.changes["status"] == "cancelled"
    assert decision.changes["payment_status"] == "failed"
    assert decision.notification is None


def test_dropped_payment_cancels_order():
    decision = decide(state("pending"), PaymentDropped("RM-1"))

    assert decision.changes == {"status": "cancelled", "payment_status": "cancelled"}


@pytest.mark.parametrize("status", ["confirmed", "processing", "shipped", "delivered", "cancelled"])
def test_payment_events_after_pending_are_noops(status):
    for event in (PaymentSucceeded("RM-1"), PaymentFailed("RM-1"), PaymentDropped("RM-1")):
        decision = decide(state(status, "completed"), event)
        assert decision.noop
        assert decision.changes == {}
        assert decision.notification is None


def test_admin_cannot_confirm_unpaid_order():
    with pytest.raises(InvalidTransition) as exc:
        decide(state("pending"), AdminSetStatus("id", OrderStatus.confirmed))

    assert exc.value.current == "pending"
    assert exc.value.target == "confirmed"
    assert "payment is pending" in str(exc.value)


def test_admin_can_cancel_pending_order():
    decision = decide(state("pending"), AdminSetStatus("id", OrderStatus.cancelled))

    assert decision.changes == {"status": "cancelled"}
    assert decision.notification is None


def test_admin_moves_paid_order_forward():
    decision = decide(state("confirmed", "completed"), AdminSetStatus("id", OrderStatus.processing), NOW)

    assert decision.changes == {"status": "processing"}
    assert decision.guard["status"] == "confirmed"


def test_admin_marking_delivered_stamps_time_and_emails():
    decision = decide(state("shipped", "completed"), AdminSetStatus("id", OrderStatus.delivered), NOW)

    assert decision.changes == {"status": "delivered", "delivered_at": NOW}
    assert decision.notification == NotificationKind.DELIVERY_CONFIRMATION


def test_default_timestamps_are_utc_aware():
    decision = decide(state("shipped", "completed"), AdminSetStatus("id", OrderStatus.delivered))

    assert decision.changes["delivered_at"].tzinfo == timezone.utc


def test_admin_marking_shipped_stamps_shipped_at():
    decision = decide(state("processing", "completed"), AdminSetStatus("id", OrderStatus.shipped), NOW)

    assert decision.changes["shipped_at"] == NOW


def test_admin_same_status_is_noop():
    decision = decide(state("processing", "completed"), AdminSetStatus("id", OrderStatus.processing))

    assert decision.noop


@pytest.mark.parametrize("current,target", [
    ("shipped", "processing"),
    ("delivered", "shipped"),
    ("cancelled", "confirmed"),
    ("confirmed", "delivered"),
    ("delivered", "cancelled"),
])
def test_admin_cannot_move_backwards_or_skip(current, target):
    with pytest.raises(InvalidTransition):
        decide(state(current, "completed"), AdminSetStatus("id", OrderStatus(target)))


def test_shipment_on_confirmed_order_ships_it():
    event = ShipmentCreated("id", tracking_number="DLV1", partner="delhivery", eta="2026-10-25")
    decision = decide(state("confirmed", "completed"), event, NOW)

    assert decision.changes == {
        "status": "shipped",
        "shipped_at": NOW,
        "tracking_number": "DLV1",
        "awb_number": "DLV1",
        "delivery_partner": "delhivery",
        "estimated_delivery": "2026-10-25",
    }
    assert decision.guard["tracking_number"] is None
    assert decision.notification == NotificationKind.SHIPPING_NOTIFICATION


def test_same_tracking_on_shipped_order_is_noop():
    event = ShipmentCreated("id", tracking_number="DLV1", partner="delhivery")
    decision = decide(state("shipped", "completed", tracking="DLV1"), event)

    assert decision.noop


def test_new_tracking_on_shipped_order_updates_without_status_change():
    event = ShipmentCreated("id", tracking_number="DLV2", partner="delhivery")
    decision = decide(state("shipped", "completed", tracking="DLV1"), event)

    assert "status" not in decision.changes
    assert decision.changes["tracking_number"] == "DLV2"
    assert decision.guard["tracking_number"] == "DLV1"
    assert decision.notification == NotificationKind.SHIPPING_NOTIFICATION


def test_shipment_requires_payment():
    with pytest.raises(InvalidTransition):
        decide(state("pending"), ShipmentCreated("id", tracking_number="X", partner="dtdc"))


def test_shipment_on_cancelled_order_rejected():
    with pytest.raises(InvalidTransition):
        decide(state("cancelled", "completed"), ShipmentCreated("id", tracking_number="X", partner="dtdc"))


def test_delivery_from_shipped_and_repeat():
    decision = decide(state("shipped", "completed"), ShipmentDelivered("id"), NOW)
    assert decision.changes == {"status": "delivered", "delivered_at": NOW}

    assert decide(state("delivered", "completed"), ShipmentDelivered("id")).noop

    with pytest.raises(InvalidTransition):
        decide(state("confirmed", "completed"), ShipmentDelivered("id"))


def test_terminal_states_have_no_exits():
    for status in TERMINAL:
        assert ALLOWED_TRANSITIONS[status] == []


def test_every_transition_increases_rank():
    for current, targets in ALLOWED_TRANSITIONS.items():
        for target in targets:
            assert status_rank(target) > status_rank(current)


def test_can_follow():
    assert can_follow(OrderStatus.pending, OrderStatus.delivered)
    assert can_follow(OrderStatus.shipped, OrderStatus.shipped)
    assert not can_follow(OrderStatus.shipped, OrderStatus.cancelled)
    assert not can_follow(OrderStatus.cancelled, OrderStatus.confirmed)
