from decimal import Decimal

from sqlmodel import select

from rakhimart.exceptions import CourierError, CourierUnsupportedOperation
from rakhimart.models.email import EmailLog
from rakhimart.models.operator_alert import AlertKind, OperatorAlert
from rakhimart.models.order import Order
from rakhimart.services.notification_service import create_operator_alert
from tests.conftest import make_order, reload


def paid_order(session, products, **fields):
    return make_order(
        session,
        products["designer-rakhi"],
        quantity=2,
        status=fields.pop("status", "confirmed"),
        payment_status="completed",
        **fields,
    )


# ---------- STATUS ----------

def test_unpaid_order_cannot_be_confirmed(client, session, products, admin_headers):
    order = make_order(session, products["designer-rakhi"])

    response = client.patch(
        f"/admin/orders/{order.id}/status",
        json={"status": "confirmed"},
        headers=admin_headers,
    )

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["current_status"] == "pending"
    assert detail["requested_status"] == "confirmed"
    assert reload(session, Order, order.id).status == "pending"


def test_admin_cancels_pending_order(client, session, products, admin_headers):
    order = make_order(session, products["designer-rakhi"])

    response = client.patch(
        f"/admin/orders/{order.id}/status",
        json={"status": "cancelled"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["applied"] is True
    order = reload(session, Order, order.id)
    assert order.status == "cancelled"
    assert order.payment_status == "pending"


def test_backwards_move_rejected(client, session, products, admin_headers):
    order = paid_order(session, products, status="shipped", tracking_number="DLV1", delivery_partner="delhivery")

    response = client.patch(
        f"/admin/orders/{order.id}/status",
        json={"status": "processing"},
        headers=admin_headers,
    )

    assert response.status_code == 409


def test_unknown_status_rejected(client, session, products, admin_headers):
    order = paid_order(session, products)

    response = client.patch(
        f"/admin/orders/{order.id}/status",
        json={"status": "lost"},
        headers=admin_headers,
    )

    assert response.status_code == 422


def test_marking_delivered_emails_customer(client, session, products, admin_headers, email_provider):
    order = paid_order(session, products, status="shipped", tracking_number="DLV1", delivery_partner="delhivery")

    response = client.patch(
        f"/admin/orders/{order.id}/status",
        json={"status": "delivered"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["order"]["status"] == "delivered"
    assert reload(session, Order, order.id).delivered_at is not None

    mail = email_provider.to("priya@example.com")
    assert len(mail) == 1
    assert "Delivered" in mail[0].subject


def test_admin_routes_need_admin(client, session, products, user_headers):
    order = paid_order(session, products)

    forbidden = client.patch(
        f"/admin/orders/{order.id}/status",
        json={"status": "processing"},
        headers=user_headers,
    )
    anonymous = client.get("/admin/orders")

    assert forbidden.status_code == 403
    assert anonymous.status_code == 401
    assert reload(session, Order, order.id).status == "confirmed"


def test_missing_order_is_404(client, admin_headers):
    response = client.patch(
        "/admin/orders/no-such-order/status",
        json={"status": "cancelled"},
        headers=admin_headers,
    )

    assert response.status_code == 404


# ---------- SHIPPING ----------

def test_attach_tracking_ships_and_emails(client, session, products, admin_headers, email_provider):
    order = paid_order(session, products)

    response = client.post(
        f"/admin/orders/{order.id}/tracking",
        json={"tracking_number": "BD12345", "delivery_partner": "BlueDart", "estimated_delivery": "2026-10-24"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["applied"] is True
    assert body["order"]["status"] == "shipped"
    assert body["order"]["tracking_url"] == "https://www.bluedart.com/tracking?trackingNumber=BD12345"

    order = reload(session, Order, order.id)
    assert order.delivery_partner == "bluedart"
    assert order.awb_number == "BD12345"
    assert order.shipped_at is not None

    mail = email_provider.to("priya@example.com")
    assert len(mail) == 1
    assert "BD12345" in mail[0].html


def test_same_tracking_twice_is_noop(client, session, products, admin_headers, email_provider):
    order = paid_order(session, products)
    payload = {"tracking_number": "DLV555", "delivery_partner": "delhivery"}

    client.post(f"/admin/orders/{order.id}/tracking", json=payload, headers=admin_headers)
    again = client.post(f"/admin/orders/{order.id}/tracking", json=payload, headers=admin_headers)

    assert again.status_code == 200
    assert again.json()["applied"] is False
    assert len(email_provider.to("priya@example.com")) == 1


def test_new_tracking_replaces_old(client, session, products, admin_headers, email_provider):
    order = paid_order(session, products)

    client.post(
        f"/admin/orders/{order.id}/tracking",
        json={"tracking_number": "DLV555", "delivery_partner": "delhivery"},
        headers=admin_headers,
    )
    replaced = client.post(
        f"/admin/orders/{order.id}/tracking",
        json={"tracking_number": "DLV556", "delivery_partner": "delhivery"},
        headers=admin_headers,
    )

    assert replaced.json()["applied"] is True
    order = reload(session, Order, order.id)
    assert order.status == "shipped"
    assert order.tracking_number == "DLV556"
    assert len(email_provider.to("priya@example.com")) == 2


def test_tracking_on_unpaid_order_rejected(client, session, products, admin_headers):
    order = make_order(session, products["designer-rakhi"])

    response = client.post(
        f"/admin/orders/{order.id}/tracking",
        json={"tracking_number": "DLV555", "delivery_partner": "delhivery"},
        headers=admin_headers,
    )

    assert response.status_code == 409


def test_create_shipment_books_courier(client, session, products, admin_headers, courier):
    order = paid_order(session, products, status="processing")

    response = client.post(f"/admin/orders/{order.id}/shipment", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["order"]["tracking_number"] == "DLV000001"

    data = courier.created[0]
    assert data.order_number == order.order_number
    assert data.total_quantity == 2
    assert data.delivery_address["pincode"] == "302001"
    assert data.weight_kg == 1.0

    order = reload(session, Order, order.id)
    assert order.status == "shipped"
    assert order.delivery_partner == "delhivery"


def test_create_shipment_refused_before_payment(client, session, products, admin_headers, courier):
    order = make_order(session, products["designer-rakhi"])

    response = client.post(f"/admin/orders/{order.id}/shipment", headers=admin_headers)

    assert response.status_code == 409
    assert courier.created == []


def test_create_shipment_with_unsupported_courier(client, session, products, admin_headers, courier):
    order = paid_order(session, products)

    def unsupported(data):
        raise CourierUnsupportedOperation("dtdc", "shipment creation")

    courier.create_shipment = unsupported

    response = client.post(
        f"/admin/orders/{order.id}/shipment",
        json={"delivery_partner": "dtdc"},
        headers=admin_headers,
    )

    assert response.status_code == 502
    assert response.json()["detail"]["retryable"] is False
    assert reload(session, Order, order.id).status == "confirmed"


def test_tracking_pull_marks_delivered(client, session, products, admin_headers, courier, email_provider):
    order = paid_order(session, products, status="shipped", tracking_number="DLV1", delivery_partner="delhivery")
    courier.status = "Delivered"

    response = client.get(f"/admin/orders/{order.id}/tracking", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["status"] == "delivered"
    assert response.json()["courier_status"] == "Delivered"
    assert reload(session, Order, order.id).status == "delivered"
    assert len(email_provider.to("priya@example.com")) == 1


def test_tracking_pull_updates_eta(client, session, products, admin_headers, courier):
    order = paid_order(session, products, status="shipped", tracking_number="DLV1", delivery_partner="delhivery")
    courier.eta = "2026-10-30"

    response = client.get(f"/admin/orders/{order.id}/tracking", headers=admin_headers)

    assert response.json()["estimated_delivery"] == "2026-10-30"
    order = reload(session, Order, order.id)
    assert order.status == "shipped"
    assert order.estimated_delivery == "2026-10-30"


def test_tracking_pull_reports_courier_errors(client, session, products, admin_headers, courier):
    order = paid_order(session, products, status="shipped", tracking_number="DLV1", delivery_partner="delhivery")

    def down(tracking_number):
        raise CourierError("delhivery unreachable", retryable=True, provider="delhivery")

    courier.track_shipment = down

    response = client.get(f"/admin/orders/{order.id}/tracking", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["tracking_error"] == "delhivery unreachable"
    assert response.json()["tracking_url"] == "https://www.delhivery.com/track/package/DLV1"
    assert reload(session, Order, order.id).status == "shipped"


# ---------- READS ----------

def test_list_and_timeline(client, session, products, admin_headers):
    pending = make_order(session, products["designer-rakhi"], number="RM-20261019-PEND01")
    paid_order(session, products, number="RM-20261019-PAID01")

    client.patch(f"/admin/orders/{pending.id}/status", json={"status": "cancelled"}, headers=admin_headers)

    listing = client.get("/admin/orders", params={"status": "cancelled"}, headers=admin_headers).json()
    assert listing["total_items"] == 1
    assert listing["results"][0]["order_number"] == "RM-20261019-PEND01"

    events = client.get(f"/admin/orders/{pending.id}/events", headers=admin_headers).json()
    assert [e["event_type"] for e in events] == ["admin_set_status"]
    assert events[0]["created_by"] == "admin:admin-1"
    assert events[0]["label"] == "Status changed to cancelled"


def test_customer_sees_only_own_orders(client, session, products, user_headers, other_user_headers):
    order = make_order(session, products["designer-rakhi"])

    mine = client.get("/orders", headers=user_headers).json()
    theirs = client.get("/orders", headers=other_user_headers).json()

    assert [o["order_number"] for o in mine] == [order.order_number]
    assert theirs == []

    assert client.get(f"/orders/{order.order_number}", headers=user_headers).status_code == 200
    assert client.get(f"/orders/{order.order_number}", headers=other_user_headers).status_code == 404


def test_customer_order_detail_has_items(client, session, products, user_headers):
    order = make_order(session, products["kids-cartoon-rakhi"], quantity=3)

    body = client.get(f"/orders/{order.order_number}", headers=user_headers).json()

    assert body["items"][0]["product_name"] == "Kids Cartoon Rakhi"
    assert body["items"][0]["quantity"] == 3
    assert Decimal(str(body["total_amount"])) == Decimal("597.00")


# ---------- SETTINGS ----------

def test_delivery_charges_drive_checkout(client, products, admin_headers):
    updated = client.put(
        "/admin/settings/delivery-charges",
        json={"flat_delivery_charge": "40", "free_delivery_threshold": "999"},
        headers=admin_headers,
    )
    assert updated.status_code == 200

    quote = client.post(
        "/checkout/quote",
        json={"items": [{"product_id": products["rakhi-gift-hamper"].id, "quantity": 1}]},
    ).json()

    assert Decimal(quote["shipping_charge"]) == Decimal("40.00")
    assert Decimal(quote["total_amount"]) == Decimal("539.00")


def test_shipping_settings(client, admin_headers):
    defaults = client.get("/admin/settings/shipping", headers=admin_headers).json()
    assert defaults["provider"] == "delhivery"
    assert "shiprocket" in defaults["available_providers"]

    updated = client.put(
        "/admin/settings/shipping",
        json={
            "provider": "Shiprocket",
            "pickup_address": {
                "name": "RakhiMart Warehouse",
                "phone": "9123456780",
                "address": "Plot 7, Industrial Area",
                "city": "Jaipur",
                "state": "Rajasthan",
                "pincode": "302013",
            },
        },
        headers=admin_headers,
    )
    assert updated.status_code == 200
    assert updated.json()["provider"] == "shiprocket"
    assert updated.json()["pickup_address"]["pincode"] == "302013"

    unknown = client.put("/admin/settings/shipping", json={"provider": "fedex"}, headers=admin_headers)
    assert unknown.status_code == 400


# ---------- OPERATOR QUEUE ----------

def test_failed_email_can_be_resent(client, session, products, admin_headers, email_provider):
    order = paid_order(session, products)
    email_provider.fail = True

    client.post(
        f"/admin/orders/{order.id}/tracking",
        json={"tracking_number": "DLV777", "delivery_partner": "delhivery"},
        headers=admin_headers,
    )

    alerts = client.get("/admin/alerts", params={"kind": "email_failed"}, headers=admin_headers).json()
    assert len(alerts) == 1

    failed = client.get("/admin/emails", params={"status": "failed"}, headers=admin_headers).json()
    assert failed["total_items"] == 1
    log_id = failed["results"][0]["id"]

    email_provider.fail = False
    resent = client.post(f"/admin/emails/{log_id}/resend", headers=admin_headers).json()

    assert resent["success"] is True
    assert len(email_provider.to("priya@example.com")) == 1
    assert session.exec(select(EmailLog).where(EmailLog.status == "sent")).one().id == resent["email_log_id"]

    # a successful resend closes the alert raised for that email
    assert client.get("/admin/alerts", params={"kind": "email_failed"}, headers=admin_headers).json() == []
    session.expire_all()
    alert = session.get(OperatorAlert, alerts[0]["id"])
    assert alert.resolved is True
    assert alert.resolved_at is not None


def test_failed_resend_keeps_alert_open(client, session, products, admin_headers, email_provider):
    order = paid_order(session, products)
    email_provider.fail = True
    client.post(
        f"/admin/orders/{order.id}/tracking",
        json={"tracking_number": "DLV778", "delivery_partner": "delhivery"},
        headers=admin_headers,
    )
    log_id = session.exec(select(EmailLog)).one().id

    resent = client.post(f"/admin/emails/{log_id}/resend", headers=admin_headers).json()

    assert resent["success"] is False
    # the original alert plus one for the failed resend
    alerts = client.get("/admin/alerts", params={"kind": "email_failed"}, headers=admin_headers).json()
    assert len(alerts) == 2


def test_operator_resolves_alert(client, session, admin_headers):
    alert = create_operator_alert(
        session=session,
        kind=AlertKind.inventory_shortfall,
        order_number="RM-20261019-ABC123",
        detail="Stock ran short",
    )

    resolved = client.post(f"/admin/alerts/{alert.id}/resolve", headers=admin_headers)

    assert resolved.status_code == 200
    assert resolved.json()["resolved"] is True
    assert client.get("/admin/alerts", headers=admin_headers).json() == []
    assert client.post("/admin/alerts/9999/resolve", headers=admin_headers).status_code == 404
