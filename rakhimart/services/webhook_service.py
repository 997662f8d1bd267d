"""
Payment gateway webhooks.

Nothing in a payload is trusted until its signature has been checked.
Verified events are mapped onto order state machine events and applied
through ``OrderLifecycle``; redelivered or late events fall out as no-ops
there, so the gateway always gets its 200 once the event is understood.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Optional

import razorpay
from pydantic import ValidationError
from sqlmodel import Session

from rakhimart.config import settings
from rakhimart.exceptions import MalformedWebhook, OrderNotFound, WebhookVerificationError
from rakhimart.notifications.dispatcher import PendingNotification
from rakhimart.repositories.order_repository import OrderRepository
from rakhimart.schemas.webhook_schemas import CashfreeWebhook, RazorpayWebhook
from rakhimart.services.order_feed import OrderFeed, order_feed
from rakhimart.services.order_lifecycle import OrderLifecycle
from rakhimart.services.order_state_machine import PaymentDropped, PaymentFailed, PaymentSucceeded

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
FAILED = "failed"
DROPPED = "dropped"

CASHFREE_EVENTS = {
    "PAYMENT_SUCCESS_WEBHOOK": SUCCEEDED,
    "PAYMENT_FAILED_WEBHOOK": FAILED,
    "PAYMENT_USER_DROPPED_WEBHOOK": DROPPED,
}

RAZORPAY_EVENTS = {
    "payment.captured": SUCCEEDED,
    "order.paid": SUCCEEDED,
    "payment.failed": FAILED,
}


@dataclass(frozen=True)
class GatewayEvent:
    provider: str
    event_type: str
    outcome: Optional[str]
    order_number: Optional[str] = None
    payment_id: Optional[str] = None
    gateway_order_id: Optional[str] = None

    def to_order_event(self, order_number: str):
        if self.outcome == SUCCEEDED:
            return PaymentSucceeded(order_number=order_number, payment_id=self.payment_id)
        if self.outcome == FAILED:
            return PaymentFailed(order_number=order_number, payment_id=self.payment_id)
        if self.outcome == DROPPED:
            return PaymentDropped(order_number=order_number)
        return None


@dataclass
class WebhookOutcome:
    event_type: str
    order_number: Optional[str] = None
    applied: bool = False
    reason: str = ""
    notification: Optional[PendingNotification] = None


# ---------- SIGNATURES ----------

def _timestamp_seconds(timestamp: str) -> float:
    try:
        value = float(timestamp)
    except (TypeError, ValueError) as exc:
        raise WebhookVerificationError("Invalid webhook timestamp") from exc

    # some gateways send milliseconds
    return value / 1000 if value > 1e12 else value


def verify_cashfree_signature(
    body: bytes,
    signature: Optional[str],
    timestamp: Optional[str],
    secret: Optional[str],
    tolerance: int = 300,
    now: Optional[float] = None,
):
    """
    HMAC-SHA256 over ``timestamp + raw body``. The header may carry the
    digest base64 or hex encoded. Raises ``WebhookVerificationError``.
    """
    if not secret:
        raise WebhookVerificationError("Webhook secret not configured")
    if not signature or not timestamp:
        raise WebhookVerificationError("Missing signature headers")

    sent_at = _timestamp_seconds(timestamp)
    now = time.time() if now is None else now
    if abs(now - sent_at) > tolerance:
        raise WebhookVerificationError("Webhook timestamp outside tolerance window")

    digest = hmac.new(secret.encode(), timestamp.encode() + body, hashlib.sha256).digest()
    candidates = (base64.b64encode(digest).decode(), digest.hex())

    if not any(hmac.compare_digest(signature.strip(), c) for c in candidates):
        raise WebhookVerificationError("Signature mismatch")


def verify_razorpay_signature(body: bytes, signature: Optional[str], secret: Optional[str], client=None):
    if not secret:
        raise WebhookVerificationError("Webhook secret not configured")
    if not signature:
        raise WebhookVerificationError("Missing signature header")

    client = client or razorpay.Client(auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET))
    try:
        client.utility.verify_webhook_signature(body.decode("utf-8"), signature, secret)
    except razorpay.errors.SignatureVerificationError as exc:
        raise WebhookVerificationError("Signature mismatch") from exc


# ---------- PARSING ----------

def _load_json(body: bytes) -> dict:
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise MalformedWebhook("Body is not JSON") from exc

    if not isinstance(payload, dict):
        raise MalformedWebhook("Body is not a JSON object")
    return payload


def parse_cashfree_event(payload: dict) -> GatewayEvent:
    event_type = str(payload.get("type") or "")
    outcome = CASHFREE_EVENTS.get(event_type)

    if not outcome:
        return GatewayEvent(provider="cashfree", event_type=event_type, outcome=None)

    try:
        webhook = CashfreeWebhook.model_validate(payload)
    except ValidationError as exc:
        raise MalformedWebhook(f"Invalid {event_type} payload: {exc}") from exc

    if not webhook.data:
        raise MalformedWebhook(f"{event_type} without data")

    payment = webhook.data.payment
    payment_id = payment.cf_payment_id if payment else None

    return GatewayEvent(
        provider="cashfree",
        event_type=event_type,
        outcome=outcome,
        order_number=webhook.data.order.order_id,
        payment_id=str(payment_id) if payment_id is not None else None,
    )


def parse_razorpay_event(payload: dict) -> GatewayEvent:
    event_type = str(payload.get("event") or "")
    outcome = RAZORPAY_EVENTS.get(event_type)

    if not outcome:
        return GatewayEvent(provider="razorpay", event_type=event_type, outcome=None)

    try:
        webhook = RazorpayWebhook.model_validate(payload)
    except ValidationError as exc:
        raise MalformedWebhook(f"Invalid {event_type} payload: {exc}") from exc

    payment = webhook.payload.payment.entity if webhook.payload.payment else None
    order = webhook.payload.order.entity if webhook.payload.order else None

    if event_type == "order.paid":
        if not order:
            raise MalformedWebhook("order.paid without order entity")
        return GatewayEvent(
            provider="razorpay",
            event_type=event_type,
            outcome=outcome,
            order_number=order.order_number,
            payment_id=payment.id if payment else None,
            gateway_order_id=order.id,
        )

    if not payment:
        raise MalformedWebhook(f"{event_type} without payment entity")

    return GatewayEvent(
        provider="razorpay",
        event_type=event_type,
        outcome=outcome,
        order_number=payment.order_number,
        payment_id=payment.id,
        gateway_order_id=payment.order_id,
    )


# ---------- RECONCILER ----------

class WebhookReconciler:
    def __init__(self, session: Session, feed: OrderFeed = order_feed, config=settings):
        self.session = session
        self.config = config
        self.repo = OrderRepository(session, feed)
        self.lifecycle = OrderLifecycle(session, feed)

    def handle_cashfree(self, body: bytes, signature: Optional[str], timestamp: Optional[str]) -> WebhookOutcome:
        try:
            verify_cashfree_signature(
                body,
                signature,
                timestamp,
                self.config.CASHFREE_WEBHOOK_SECRET,
                tolerance=self.config.WEBHOOK_TOLERANCE_SECONDS,
            )
        except WebhookVerificationError as exc:
            logger.warning(f"Rejected Cashfree webhook: {exc}")
            raise

        return self.apply(parse_cashfree_event(_load_json(body)))

    def handle_razorpay(self, body: bytes, signature: Optional[str]) -> WebhookOutcome:
        try:
            verify_razorpay_signature(body, signature, self.config.RAZORPAY_WEBHOOK_SECRET)
        except WebhookVerificationError as exc:
            logger.warning(f"Rejected Razorpay webhook: {exc}")
            raise

        return self.apply(parse_razorpay_event(_load_json(body)))

    def _resolve_order_number(self, event: GatewayEvent) -> Optional[str]:
        if event.order_number and self.repo.get_by_number(event.order_number):
            return event.order_number

        if event.gateway_order_id:
            order = self.repo.get_by_gateway_order_id(event.gateway_order_id)
            if order:
                return order.order_number

        return None

    def apply(self, event: GatewayEvent) -> WebhookOutcome:
        logger.info(f"{event.provider} webhook {event.event_type} for {event.order_number or event.gateway_order_id}")

        if not event.outcome:
            logger.info(f"Ignoring unhandled {event.provider} event type {event.event_type!r}")
            return WebhookOutcome(event_type=event.event_type, reason="unhandled event type")

        order_number = self._resolve_order_number(event)
        if not order_number:
            # acknowledged so the gateway stops redelivering
            logger.warning(
                f"{event.provider} {event.event_type} for unknown order "
                f"{event.order_number or event.gateway_order_id}"
            )
            return WebhookOutcome(
                event_type=event.event_type,
                order_number=event.order_number,
                reason="unknown order",
            )

        try:
            result = self.lifecycle.apply(event.to_order_event(order_number), actor=event.provider)
        except OrderNotFound:
            logger.warning(f"Order {order_number} disappeared while applying {event.event_type}")
            return WebhookOutcome(event_type=event.event_type, order_number=order_number, reason="unknown order")

        return WebhookOutcome(
            event_type=event.event_type,
            order_number=order_number,
            applied=result.applied,
            reason=result.decision.reason,
            notification=result.notification,
        )
