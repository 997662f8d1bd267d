import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from rakhimart.database import get_session
from rakhimart.dependencies.providers import get_account_provisioner, get_order_feed, get_payment_gateway
from rakhimart.exceptions import RakhiMartError
from rakhimart.schemas.checkout_schemas import (
    CheckoutQuote,
    CheckoutRequest,
    CheckoutResponse,
    PaymentSessionOut,
    QuoteLine,
    QuoteRequest,
)
from rakhimart.services.checkout_service import CheckoutService
from rakhimart.utils.errors import http_error
from rakhimart.utils.token import CurrentUser, get_optional_user

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/quote", response_model=CheckoutQuote)
def checkout_quote(
    payload: QuoteRequest,
    session: Session = Depends(get_session),
):
    """Cart summary priced from the product table."""
    try:
        quote = CheckoutService(session, gateway=None).quote(payload.items)
    except RakhiMartError as exc:
        raise http_error(exc)

    return CheckoutQuote(
        items=[
            QuoteLine(
                product_id=line.product.id,
                product_name=line.product.name,
                price=line.price,
                quantity=line.quantity,
                line_total=line.line_total,
            )
            for line in quote.lines
        ],
        subtotal=quote.subtotal,
        shipping_charge=quote.shipping_charge,
        total_amount=quote.total_amount,
        free_delivery_threshold=quote.free_delivery_threshold,
    )


@router.post("", response_model=CheckoutResponse, status_code=201)
def place_order(
    payload: CheckoutRequest,
    session: Session = Depends(get_session),
    current_user: Optional[CurrentUser] = Depends(get_optional_user),
    gateway=Depends(get_payment_gateway),
    provisioner=Depends(get_account_provisioner),
    feed=Depends(get_order_feed),
):
    service = CheckoutService(session, gateway, provisioner=provisioner, feed=feed)

    try:
        result = service.place_order(payload, current_user.id if current_user else None)
    except RakhiMartError as exc:
        raise http_error(exc)

    order = result.order
    return CheckoutResponse(
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        subtotal=order.subtotal,
        shipping_charge=order.shipping_charge,
        total_amount=order.total_amount,
        items_saved=result.items_saved,
        payment_session=(
            PaymentSessionOut(**result.payment_session.as_dict())
            if result.payment_session
            else None
        ),
        payment_error=result.payment_error,
        payment_retryable=result.payment_retryable,
    )


@router.post("/orders/{order_number}/payment-session", response_model=PaymentSessionOut)
def retry_payment_session(
    order_number: str,
    email: Optional[str] = Query(None, description="Required for guest orders"),
    session: Session = Depends(get_session),
    current_user: Optional[CurrentUser] = Depends(get_optional_user),
    gateway=Depends(get_payment_gateway),
    feed=Depends(get_order_feed),
):
    """Fetch a fresh payment session for an order still awaiting payment."""
    service = CheckoutService(session, gateway, feed=feed)

    try:
        payment_session = service.create_payment_session_for(
            order_number,
            user_id=current_user.id if current_user else None,
            customer_email=email,
        )
    except RakhiMartError as exc:
        raise http_error(exc)

    return PaymentSessionOut(**payment_session.as_dict())
