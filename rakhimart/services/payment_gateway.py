import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Optional, Protocol

import razorpay
import requests

from rakhimart.config import settings
from rakhimart.exceptions import PaymentGatewayError, is_retryable_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Customer:
    customer_id: str
    name: str
    email: str
    phone: str


@dataclass(frozen=True)
class PaymentSession:
    provider: str
    gateway_order_id: str
    payment_session_id: Optional[str]
    amount: str
    currency: str
    key_id: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


class PaymentGateway(Protocol):
    name: str

    def create_payment_session(
        self,
        order_number: str,
        amount: Decimal,
        currency: str,
        customer: Customer,
        existing_gateway_order_id: Optional[str] = None,
    ) -> PaymentSession:
        ...


def _money(amount: Decimal) -> str:
    return str(Decimal(amount).quantize(Decimal("0.01")))


class CashfreeGateway:
    """
    Cashfree PG orders API.

    The store's order number is used as the Cashfree order id, so asking
    twice for the same order returns the session Cashfree already holds.
    """

    name = "cashfree"

    def __init__(
        self,
        app_id: str,
        secret_key: str,
        base_url: str,
        api_version: str = "2023-08-01",
        return_url: str = "",
        notify_url: str = "",
        timeout: float = 10.0,
    ):
        if not app_id or not secret_key:
            raise PaymentGatewayError(
                "Cashfree credentials not configured", retryable=False, provider=self.name
            )
        self.app_id = app_id
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.return_url = return_url
        self.notify_url = notify_url
        self.timeout = timeout

    @property
    def headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "x-api-version": self.api_version,
            "x-client-id": self.app_id,
            "x-client-secret": self.secret_key,
        }

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            return requests.request(
                method,
                f"{self.base_url}{path}",
                headers=self.headers,
                timeout=self.timeout,
                **kwargs,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise PaymentGatewayError(
                f"Cashfree unreachable: {exc}", retryable=True, provider=self.name
            ) from exc

    def _fail(self, response: requests.Response, action: str):
        raise PaymentGatewayError(
            f"Cashfree {action} failed ({response.status_code}): {response.text}",
            retryable=is_retryable_status(response.status_code),
            provider=self.name,
            status_code=response.status_code,
        )

    def _session(self, data: dict, order_number: str, amount: Decimal, currency: str) -> PaymentSession:
        return PaymentSession(
            provider=self.name,
            gateway_order_id=data.get("order_id") or order_number,
            payment_session_id=data.get("payment_session_id"),
            amount=_money(data.get("order_amount", amount)),
            currency=data.get("order_currency", currency),
        )

    def create_payment_session(
        self,
        order_number: str,
        amount: Decimal,
        currency: str,
        customer: Customer,
        existing_gateway_order_id: Optional[str] = None,
    ) -> PaymentSession:
        order_meta = {}
        if self.return_url:
            order_meta["return_url"] = self.return_url
        if self.notify_url:
            order_meta["notify_url"] = self.notify_url

        payload = {
            "order_id": order_number,
            "order_amount": float(_money(amount)),
            "order_currency": currency,
            "customer_details": {
                "customer_id": customer.customer_id,
                "customer_name": customer.name,
                "customer_email": customer.email,
                "customer_phone": customer.phone,
            },
            "order_meta": order_meta,
            "order_note": f"{settings.STORE_NAME} Order",
        }

        logger.info(f"Creating Cashfree order {order_number} for {_money(amount)} {currency}")
        response = self._request("POST", "/orders", json=payload)

        if response.status_code == 409:
            # order id already registered with Cashfree; reuse its session
            logger.info(f"Cashfree order {order_number} exists, fetching current session")
            response = self._request("GET", f"/orders/{order_number}")
            if response.status_code >= 400:
                self._fail(response, "order fetch")
        elif response.status_code >= 400:
            self._fail(response, "order create")

        try:
            data = response.json()
        except ValueError as exc:
            raise PaymentGatewayError(
                f"Cashfree returned a non-JSON body ({response.status_code})",
                retryable=True,
                provider=self.name,
                status_code=response.status_code,
            ) from exc

        return self._session(data, order_number, amount, currency)


class RazorpayGateway:
    name = "razorpay"

    def __init__(self, key_id: str, key_secret: str, client=None, timeout: float = 10.0):
        if not key_id or not key_secret:
            raise PaymentGatewayError(
                "Razorpay credentials not configured", retryable=False, provider=self.name
            )
        self.key_id = key_id
        self.timeout = timeout
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    def _call(self, fn, *args):
        try:
            # the SDK hands options to requests unchanged and sets no timeout itself
            return fn(*args, timeout=self.timeout)
        except razorpay.errors.ServerError as exc:
            raise PaymentGatewayError(
                f"Razorpay server error: {exc}", retryable=True, provider=self.name
            ) from exc
        except (razorpay.errors.BadRequestError, razorpay.errors.GatewayError) as exc:
            raise PaymentGatewayError(
                f"Razorpay rejected request: {exc}", retryable=False, provider=self.name
            ) from exc
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise PaymentGatewayError(
                f"Razorpay unreachable: {exc}", retryable=True, provider=self.name
            ) from exc

    def _session(self, razorpay_order: dict) -> PaymentSession:
        return PaymentSession(
            provider=self.name,
            gateway_order_id=razorpay_order["id"],
            payment_session_id=razorpay_order["id"],
            amount=_money(Decimal(razorpay_order["amount"]) / 100),
            currency=razorpay_order["currency"],
            key_id=self.key_id,
        )

    def create_payment_session(
        self,
        order_number: str,
        amount: Decimal,
        currency: str,
        customer: Customer,
        existing_gateway_order_id: Optional[str] = None,
    ) -> PaymentSession:
        if existing_gateway_order_id:
            existing = self._call(self.client.order.fetch, existing_gateway_order_id)
            if existing.get("status") == "created":
                logger.info(f"Reusing Razorpay order {existing['id']} for {order_number}")
                return self._session(existing)

        razorpay_order = self._call(self.client.order.create, {
            "amount": int(Decimal(amount) * 100),  # paise
            "currency": currency,
            "receipt": order_number,
            "notes": {
                "order_number": order_number,
                "customer_email": customer.email,
            },
        })

        logger.info(f"Razorpay order {razorpay_order['id']} created for {order_number}")
        return self._session(razorpay_order)


def build_payment_gateway(config=settings) -> PaymentGateway:
    provider = config.PAYMENT_PROVIDER.lower()

    if provider == "cashfree":
        return CashfreeGateway(
            app_id=config.CASHFREE_APP_ID,
            secret_key=config.CASHFREE_SECRET_KEY,
            base_url=config.cashfree_base_url,
            api_version=config.CASHFREE_API_VERSION,
            return_url=config.PAYMENT_RETURN_URL,
            notify_url=config.PAYMENT_NOTIFY_URL,
            timeout=config.HTTP_TIMEOUT_SECONDS,
        )
    if provider == "razorpay":
        return RazorpayGateway(
            config.RAZORPAY_KEY_ID,
            config.RAZORPAY_KEY_SECRET,
            timeout=config.HTTP_TIMEOUT_SECONDS,
        )

    raise PaymentGatewayError(
        f"Unsupported payment provider: {provider}", retryable=False, provider=provider
    )
