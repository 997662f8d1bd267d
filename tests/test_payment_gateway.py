from decimal import Decimal
from types import SimpleNamespace

import pytest
import razorpay
import requests

from rakhimart.exceptions import PaymentGatewayError
from rakhimart.services import payment_gateway
from rakhimart.services.payment_gateway import (
    CashfreeGateway,
    Customer,
    RazorpayGateway,
    build_payment_gateway,
)
from tests.conftest import FakeResponse, Recorder

CUSTOMER = Customer(customer_id="guest_9876543210", name="Priya Sharma", email="priya@example.com", phone="9876543210")


def cashfree(**kwargs):
    return CashfreeGateway("cf-app", "cf-secret", "https://sandbox.cashfree.com/pg/", **kwargs)


def test_cashfree_creates_order(monkeypatch):
    recorder = Recorder(FakeResponse(payload={
        "order_id": "RM-20261019-PAY001",
        "payment_session_id": "session_abc",
        "order_amount": 349.0,
        "order_currency": "INR",
    }))
    monkeypatch.setattr(payment_gateway.requests, "request", recorder)

    session = cashfree(notify_url="https://api.rakhimart.in/webhooks/cashfree").create_payment_session(
        "RM-20261019-PAY001", Decimal("349.00"), "INR", CUSTOMER
    )

    assert session.payment_session_id == "session_abc"
    assert session.amount == "349.00"

    method, url, kwargs = recorder.calls[0]
    assert (method, url) == ("POST", "https://sandbox.cashfree.com/pg/orders")
    assert kwargs["headers"]["x-client-id"] == "cf-app"
    assert kwargs["json"]["order_amount"] == 349.0
    assert kwargs["json"]["customer_details"]["customer_id"] == "guest_9876543210"
    assert kwargs["json"]["order_meta"] == {"notify_url": "https://api.rakhimart.in/webhooks/cashfree"}


def test_cashfree_reuses_existing_order(monkeypatch):
    recorder = Recorder(
        FakeResponse(409, text="order_already_exists"),
        FakeResponse(payload={"order_id": "RM-1", "payment_session_id": "session_old", "order_amount": 349}),
    )
    monkeypatch.setattr(payment_gateway.requests, "request", recorder)

    session = cashfree().create_payment_session("RM-1", Decimal("349"), "INR", CUSTOMER)

    assert session.payment_session_id == "session_old"
    assert recorder.calls[1][:2] == ("GET", "https://sandbox.cashfree.com/pg/orders/RM-1")


@pytest.mark.parametrize("status,retryable", [(400, False), (401, False), (429, True), (502, True)])
def test_cashfree_errors_are_classified(monkeypatch, status, retryable):
    monkeypatch.setattr(payment_gateway.requests, "request", Recorder(FakeResponse(status, text="nope")))

    with pytest.raises(PaymentGatewayError) as exc:
        cashfree().create_payment_session("RM-1", Decimal("349"), "INR", CUSTOMER)

    assert exc.value.retryable is retryable
    assert exc.value.provider == "cashfree"


def test_cashfree_timeout_is_retryable(monkeypatch):
    monkeypatch.setattr(payment_gateway.requests, "request", Recorder(requests.Timeout("slow")))

    with pytest.raises(PaymentGatewayError) as exc:
        cashfree().create_payment_session("RM-1", Decimal("349"), "INR", CUSTOMER)

    assert exc.value.retryable


def test_cashfree_non_json_success_is_retryable(monkeypatch):
    monkeypatch.setattr(
        payment_gateway.requests, "request", Recorder(FakeResponse(200, text="<html>gateway page</html>"))
    )

    with pytest.raises(PaymentGatewayError) as exc:
        cashfree().create_payment_session("RM-1", Decimal("349"), "INR", CUSTOMER)

    assert exc.value.retryable
    assert "non-JSON" in str(exc.value)


def test_cashfree_needs_credentials():
    with pytest.raises(PaymentGatewayError):
        CashfreeGateway("", "", "https://api.cashfree.com/pg")


class FakeRazorpayOrders:
    def __init__(self, existing=None, error=None):
        self.existing = existing
        self.error = error
        self.created = []
        self.options = []

    def create(self, data, **options):
        self.options.append(options)
        if self.error:
            raise self.error
        self.created.append(data)
        return {"id": "order_RZP001", "amount": data["amount"], "currency": data["currency"], "status": "created"}

    def fetch(self, order_id, **options):
        self.options.append(options)
        return self.existing


def razorpay_gateway(orders, **kwargs):
    return RazorpayGateway("rzp_test_key", "rzp_test_secret", client=SimpleNamespace(order=orders), **kwargs)


def test_razorpay_creates_order_in_paise():
    orders = FakeRazorpayOrders()

    session = razorpay_gateway(orders).create_payment_session("RM-2", Decimal("548.50"), "INR", CUSTOMER)

    assert orders.created[0]["amount"] == 54850
    assert orders.created[0]["receipt"] == "RM-2"
    assert orders.created[0]["notes"]["order_number"] == "RM-2"
    assert session.gateway_order_id == "order_RZP001"
    assert session.amount == "548.50"
    assert session.key_id == "rzp_test_key"


def test_razorpay_reuses_unpaid_order():
    orders = FakeRazorpayOrders(existing={"id": "order_OLD", "amount": 34900, "currency": "INR", "status": "created"})

    session = razorpay_gateway(orders).create_payment_session(
        "RM-2", Decimal("349"), "INR", CUSTOMER, existing_gateway_order_id="order_OLD"
    )

    assert session.gateway_order_id == "order_OLD"
    assert orders.created == []


def test_razorpay_calls_are_bounded_by_timeout():
    orders = FakeRazorpayOrders(existing={"id": "order_OLD", "amount": 34900, "currency": "INR", "status": "paid"})

    razorpay_gateway(orders, timeout=4.5).create_payment_session(
        "RM-2", Decimal("349"), "INR", CUSTOMER, existing_gateway_order_id="order_OLD"
    )

    # one fetch of the paid order, then a fresh create
    assert orders.options == [{"timeout": 4.5}, {"timeout": 4.5}]


def test_razorpay_errors_are_classified():
    server = razorpay_gateway(FakeRazorpayOrders(error=razorpay.errors.ServerError("down")))
    rejected = razorpay_gateway(FakeRazorpayOrders(error=razorpay.errors.BadRequestError("bad amount")))

    with pytest.raises(PaymentGatewayError) as exc:
        server.create_payment_session("RM-2", Decimal("349"), "INR", CUSTOMER)
    assert exc.value.retryable

    with pytest.raises(PaymentGatewayError) as exc:
        rejected.create_payment_session("RM-2", Decimal("349"), "INR", CUSTOMER)
    assert not exc.value.retryable


def test_build_payment_gateway():
    config = SimpleNamespace(
        PAYMENT_PROVIDER="razorpay",
        RAZORPAY_KEY_ID="rzp_test_key",
        RAZORPAY_KEY_SECRET="rzp_test_secret",
        HTTP_TIMEOUT_SECONDS=7.0,
    )
    gateway = build_payment_gateway(config)
    assert isinstance(gateway, RazorpayGateway)
    assert gateway.timeout == 7.0

    config.PAYMENT_PROVIDER = "paytm"
    with pytest.raises(PaymentGatewayError):
        build_payment_gateway(config)
