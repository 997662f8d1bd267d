import base64
import hashlib
import hmac
import json
import os
import time
from decimal import Decimal

# settings are read once at import time
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["CASHFREE_WEBHOOK_SECRET"] = "cf-webhook-secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "rzp-webhook-secret"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["EMAIL_PROVIDER"] = "log"
os.environ["ADMIN_EMAILS"] = '["ops@rakhimart.in"]'

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from rakhimart.database import build_engine, create_db_and_tables, get_session
from rakhimart.dependencies.providers import (
    get_account_provisioner,
    get_courier_factory,
    get_notifier,
    get_order_feed,
    get_payment_gateway,
)
from rakhimart.exceptions import AccountProvisioningError, EmailProviderError
from rakhimart.main import app
from rakhimart.models.order import Order
from rakhimart.models.order_item import OrderItem
from rakhimart.models.product import Product
from rakhimart.notifications.dispatcher import OrderNotifier
from rakhimart.services.delivery_service import ShipmentReceipt, TrackingInfo, tracking_url_for
from rakhimart.services.email_service import EmailResult, Mailer
from rakhimart.services.order_feed import OrderFeed
from rakhimart.services.payment_gateway import PaymentSession
from rakhimart.utils.token import create_access_token

CASHFREE_SECRET = "cf-webhook-secret"
RAZORPAY_SECRET = "rzp-webhook-secret"


# ---------- FAKE COLLABORATORS ----------

class FakeGateway:
    name = "cashfree"

    def __init__(self):
        self.calls = []
        self.error = None

    def create_payment_session(self, order_number, amount, currency, customer, existing_gateway_order_id=None):
        self.calls.append({"order_number": order_number, "amount": amount, "customer": customer})
        if self.error:
            raise self.error
        return PaymentSession(
            provider=self.name,
            gateway_order_id=order_number,
            payment_session_id=f"session_{order_number}_{len(self.calls)}",
            amount=str(amount),
            currency=currency,
        )


class FakeProvisioner:
    def __init__(self):
        self.calls = []
        self.error = None

    def create_account(self, email, password, first_name="", last_name="", phone=None):
        self.calls.append(email)
        if self.error:
            raise self.error
        return "provisioned-user"


class FakeEmailProvider:
    name = "fake"

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, message):
        if self.fail:
            raise EmailProviderError("mailbox rejected", retryable=False, provider=self.name)
        self.sent.append(message)
        return EmailResult(success=True, message_id=f"msg-{len(self.sent)}", provider=self.name)

    def to(self, address):
        return [m for m in self.sent if m.to == address]


class FakeCourier:
    name = "delhivery"
    capabilities = frozenset({"create", "track", "url"})

    def __init__(self):
        self.created = []
        self.status = "In Transit"
        self.eta = "2026-10-25"

    def create_shipment(self, data):
        self.created.append(data)
        return ShipmentReceipt(tracking_number=f"DLV{len(self.created):06d}", awb_number=f"DLV{len(self.created):06d}")

    def track_shipment(self, tracking_number):
        return TrackingInfo(status=self.status, location="Delhi Hub", estimated_delivery=self.eta)

    def get_tracking_url(self, tracking_number):
        return tracking_url_for(self.name, tracking_number)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or str(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class Recorder:
    """Stands in for ``requests.request``; replays canned responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


# ---------- FIXTURES ----------

@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def feed():
    return OrderFeed()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def provisioner():
    return FakeProvisioner()


@pytest.fixture
def email_provider():
    return FakeEmailProvider()


@pytest.fixture
def courier():
    return FakeCourier()


@pytest.fixture
def notifier(engine, email_provider):
    mailer = Mailer(
        email_provider,
        from_email="orders@rakhimart.in",
        from_name="RakhiMart",
        max_retries=1,
        sleep=lambda seconds: None,
    )
    return OrderNotifier(
        mailer,
        session_factory=lambda: Session(engine),
        tracking_url_for=tracking_url_for,
        admin_emails=["ops@rakhimart.in"],
    )


@pytest.fixture
def client(engine, feed, gateway, provisioner, notifier, courier):
    def session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = session_override
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_account_provisioner] = lambda: provisioner
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_order_feed] = lambda: feed
    app.dependency_overrides[get_courier_factory] = lambda: (lambda provider=None: courier)

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def products(session):
    items = [
        Product(name="Designer Rakhi", slug="designer-rakhi", price=Decimal("299.00"), stock_quantity=10),
        Product(name="Kids Cartoon Rakhi", slug="kids-cartoon-rakhi", price=Decimal("199.00"), stock_quantity=5),
        Product(name="Rakhi Gift Hamper", slug="rakhi-gift-hamper", price=Decimal("499.00"), stock_quantity=3, weight_grams=1200),
        Product(name="Pearl Rakhi", slug="pearl-rakhi", price=Decimal("498.00"), stock_quantity=4),
        Product(name="Retired Rakhi", slug="retired-rakhi", price=Decimal("99.00"), stock_quantity=50, is_active=False),
    ]
    for p in items:
        session.add(p)
    session.commit()
    for p in items:
        session.refresh(p)
    return {p.slug: p for p in items}


def _token(sub, email, role=None):
    claims = {"sub": sub, "email": email}
    if role:
        claims["app_metadata"] = {"role": role}
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


@pytest.fixture
def user_headers():
    return _token("user-1", "priya@example.com")


@pytest.fixture
def other_user_headers():
    return _token("user-2", "rahul@example.com")


@pytest.fixture
def admin_headers():
    return _token("admin-1", "admin@rakhimart.in", role="admin")


# ---------- HELPERS ----------

ADDRESS = {
    "name": "Priya Sharma",
    "phone": "9876543210",
    "address_line_1": "12 MG Road",
    "address_line_2": "Near City Mall",
    "city": "Jaipur",
    "state": "Rajasthan",
    "postal_code": "302001",
    "country": "India",
}


def checkout_payload(items, **customer):
    return {
        "items": items,
        "customer": {
            "first_name": "Priya",
            "last_name": "Sharma",
            "email": "priya@example.com",
            "phone": "9876543210",
            **customer,
        },
        "shipping_address": ADDRESS,
    }


def make_order(
    session,
    product,
    quantity=1,
    status="pending",
    payment_status="pending",
    user_id="user-1",
    number="RM-20261019-ABC123",
    **fields,
):
    price = Decimal(product.price)
    subtotal = price * quantity
    order = Order(
        order_number=number,
        user_id=user_id,
        customer_name="Priya Sharma",
        customer_email="priya@example.com",
        customer_phone="9876543210",
        status=status,
        payment_status=payment_status,
        subtotal=subtotal,
        shipping_charge=Decimal("0.00") if subtotal >= 499 else Decimal("50.00"),
        total_amount=subtotal + (Decimal("0.00") if subtotal >= 499 else Decimal("50.00")),
        shipping_address=dict(ADDRESS),
        **fields,
    )
    session.add(order)
    session.commit()
    session.refresh(order)

    session.add(OrderItem(
        order_id=order.id,
        product_id=product.id,
        product_name=product.name,
        price=price,
        quantity=quantity,
    ))
    session.commit()
    session.refresh(order)
    return order


def reload(session, model, key):
    session.expire_all()
    return session.get(model, key)


def cashfree_event(event_type, order_number, payment_id="cf_pay_1001", amount=598.0):
    return {
        "type": event_type,
        "event_time": "2026-10-19T10:00:00+05:30",
        "data": {
            "order": {"order_id": order_number, "order_amount": amount, "order_currency": "INR"},
            "payment": {"cf_payment_id": payment_id, "payment_status": "SUCCESS"},
        },
    }


def cashfree_headers(body: bytes, secret=CASHFREE_SECRET, timestamp=None):
    timestamp = str(int(time.time())) if timestamp is None else str(timestamp)
    digest = hmac.new(secret.encode(), timestamp.encode() + body, hashlib.sha256).digest()
    return {
        "x-webhook-signature": base64.b64encode(digest).decode(),
        "x-webhook-timestamp": timestamp,
        "Content-Type": "application/json",
    }


def post_cashfree(client, payload, **kwargs):
    body = json.dumps(payload).encode()
    return client.post("/webhooks/cashfree", content=body, headers=cashfree_headers(body, **kwargs))


def razorpay_headers(body: bytes, secret=RAZORPAY_SECRET):
    return {
        "x-razorpay-signature": hmac.new(secret.encode(), body, hashlib.sha256).hexdigest(),
        "Content-Type": "application/json",
    }
