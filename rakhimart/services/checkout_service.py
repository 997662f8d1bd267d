import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlmodel import Session, select

from rakhimart.config import settings
from rakhimart.constants.order_status import OrderStatus
from rakhimart.exceptions import (
    AccountProvisioningError,
    CheckoutValidationError,
    InvalidTransition,
    OrderNotFound,
    PaymentGatewayError,
)
from rakhimart.models.operator_alert import AlertKind
from rakhimart.models.order import Order
from rakhimart.models.order_item import OrderItem
from rakhimart.models.product import Product
from rakhimart.repositories.order_repository import OrderRepository
from rakhimart.services.account_service import upsert_profile
from rakhimart.services.notification_service import create_operator_alert
from rakhimart.services.order_event_service import log_order_event
from rakhimart.services.order_feed import OrderFeed, order_feed
from rakhimart.services.payment_gateway import Customer, PaymentSession
from rakhimart.services.settings_service import load_delivery_settings

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class PricedLine:
    product: Product
    quantity: int

    @property
    def price(self) -> Decimal:
        return Decimal(self.product.price).quantize(CENTS)

    @property
    def line_total(self) -> Decimal:
        return (self.price * self.quantity).quantize(CENTS)


@dataclass
class Quote:
    lines: List[PricedLine]
    subtotal: Decimal
    shipping_charge: Decimal
    total_amount: Decimal
    free_delivery_threshold: Decimal


@dataclass
class CheckoutResult:
    order: Order
    items_saved: bool
    payment_session: Optional[PaymentSession] = None
    payment_error: Optional[str] = None
    payment_retryable: bool = False


def generate_order_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"RM-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def merge_lines(items) -> Dict[int, int]:
    """Collapse repeated products into one line, keeping first-seen order."""
    merged: Dict[int, int] = {}
    for line in items:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return merged


class CheckoutService:
    """
    Turns a cart into a pending order and a payment session.

    Prices and stock come from the product table at the moment of checkout;
    client-supplied prices or totals are never read.
    """

    def __init__(
        self,
        session: Session,
        gateway,
        provisioner=None,
        feed: OrderFeed = order_feed,
    ):
        self.session = session
        self.gateway = gateway
        self.provisioner = provisioner
        self.repo = OrderRepository(session, feed)

    # ---------- PRICING ----------

    def price_lines(self, items) -> List[PricedLine]:
        merged = merge_lines(items)
        if not merged:
            raise CheckoutValidationError("Cart is empty")

        products = {
            p.id: p
            for p in self.session.exec(
                select(Product).where(Product.id.in_(list(merged.keys())))
            ).all()
        }

        lines = []
        for product_id, quantity in merged.items():
            product = products.get(product_id)

            if not product or not product.is_active:
                raise CheckoutValidationError(f"Product {product_id} not found", status_code=404)

            if product.stock_quantity < quantity:
                raise CheckoutValidationError(
                    f"Only {product.stock_quantity} left for {product.name}"
                )

            lines.append(PricedLine(product=product, quantity=quantity))

        return lines

    def quote(self, items) -> Quote:
        lines = self.price_lines(items)
        delivery = load_delivery_settings(self.session)

        subtotal = sum((line.line_total for line in lines), Decimal("0.00"))
        shipping = delivery.shipping_charge(subtotal)

        return Quote(
            lines=lines,
            subtotal=subtotal,
            shipping_charge=shipping,
            total_amount=subtotal + shipping,
            free_delivery_threshold=delivery.free_delivery_threshold,
        )

    # ---------- ORDER ----------

    def _new_order_number(self) -> str:
        for _ in range(5):
            number = generate_order_number()
            if not self.repo.get_by_number(number):
                return number
        raise RuntimeError("Could not allocate a unique order number")

    def _resolve_user(self, request, user_id: Optional[str]) -> Optional[str]:
        customer = request.customer

        if not user_id and customer.password and self.provisioner:
            try:
                user_id = self.provisioner.create_account(
                    customer.email,
                    customer.password,
                    first_name=customer.first_name,
                    last_name=customer.last_name,
                    phone=customer.phone,
                )
            except AccountProvisioningError as exc:
                # checkout continues as a guest
                logger.warning(f"Account provisioning failed for {customer.email}: {exc}")
                create_operator_alert(
                    session=self.session,
                    kind=AlertKind.account_provisioning_failed,
                    order_number=None,
                    detail=f"Could not create an account for {customer.email}",
                    meta={"error": str(exc), "retryable": exc.retryable},
                )
                user_id = None

        if user_id:
            upsert_profile(
                self.session,
                user_id,
                first_name=customer.first_name,
                last_name=customer.last_name,
                email=customer.email,
                phone=customer.phone,
            )

        return user_id

    def place_order(self, request, user_id: Optional[str] = None) -> CheckoutResult:
        quote = self.quote(request.items)
        user_id = self._resolve_user(request, user_id)
        customer = request.customer

        order = Order(
            order_number=self._new_order_number(),
            user_id=user_id,
            customer_name=customer.full_name,
            customer_email=customer.email,
            customer_phone=customer.phone,
            status=OrderStatus.pending.value,
            subtotal=quote.subtotal,
            shipping_charge=quote.shipping_charge,
            total_amount=quote.total_amount,
            currency=settings.CURRENCY,
            shipping_address=request.shipping_address.model_dump(),
        )
        items = [
            OrderItem(
                product_id=line.product.id,
                product_name=line.product.name,
                price=line.price,
                quantity=line.quantity,
            )
            for line in quote.lines
        ]

        order, items_saved = self.repo.create(order, items)

        log_order_event(
            self.session,
            order.id,
            event_type="order_placed",
            label="Order placed",
            created_by=user_id or "guest",
            meta={"total_amount": str(order.total_amount), "items_saved": items_saved},
            to_status=order.status,
        )
        self.session.commit()

        result = CheckoutResult(order=order, items_saved=items_saved)

        try:
            result.payment_session = self._request_session(order)
        except PaymentGatewayError as exc:
            # order stays pending; the client asks again for a session
            logger.error(f"Payment session failed for {order.order_number}: {exc}")
            result.payment_error = str(exc)
            result.payment_retryable = exc.retryable
            if not exc.retryable:
                create_operator_alert(
                    session=self.session,
                    kind=AlertKind.payment_session_failed,
                    order_number=order.order_number,
                    detail=f"Payment session for {order.order_number} was rejected",
                    meta={"error": str(exc), "provider": exc.provider},
                )

        self.session.refresh(order)
        return result

    # ---------- PAYMENT SESSION ----------

    def _customer(self, order: Order) -> Customer:
        if order.user_id:
            customer_id = order.user_id
        else:
            customer_id = "guest_" + (re.sub(r"\D", "", order.customer_phone) or order.order_number)

        return Customer(
            customer_id=customer_id,
            name=order.customer_name,
            email=order.customer_email,
            phone=order.customer_phone,
        )

    def _request_session(self, order: Order) -> PaymentSession:
        if order.status != OrderStatus.pending.value:
            raise InvalidTransition(order.status, OrderStatus.pending.value, "order is no longer awaiting payment")

        existing = order.gateway_order_id if order.payment_provider == self.gateway.name else None

        payment_session = self.gateway.create_payment_session(
            order.order_number,
            order.total_amount,
            order.currency,
            self._customer(order),
            existing_gateway_order_id=existing,
        )

        stored = self.repo.set_payment_session(
            order.id,
            provider=payment_session.provider,
            gateway_order_id=payment_session.gateway_order_id,
            payment_session_id=payment_session.payment_session_id,
        )
        if not stored:
            # payment already settled while the session was being created
            self.session.refresh(order)
            raise InvalidTransition(order.status, OrderStatus.pending.value, "order is no longer awaiting payment")

        logger.info(f"Payment session ready for {order.order_number} via {payment_session.provider}")
        return payment_session

    def create_payment_session_for(
        self,
        order_number: str,
        user_id: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> PaymentSession:
        """Retry entry point: never re-creates the order."""
        order = self.repo.get_by_number(order_number)
        if not order:
            raise OrderNotFound(order_number)

        owns = (order.user_id and order.user_id == user_id) or (
            customer_email and customer_email.lower() == order.customer_email.lower()
        )
        if not owns:
            raise OrderNotFound(order_number)

        return self._request_session(order)
