import json
import logging
from typing import Iterator, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlmodel import Session

from rakhimart.database import get_session
from rakhimart.dependencies.providers import get_courier_factory, get_notifier, get_order_feed
from rakhimart.models.order import Order
from rakhimart.repositories.order_repository import OrderRepository
from rakhimart.schemas.orders_schemas import OrderItemOut, OrderOut, OrderSummaryOut, TrackingOut
from rakhimart.services.delivery_service import tracking_url_for
from rakhimart.services.order_feed import Subscription
from rakhimart.services.shipment_service import ShipmentService, TrackingResult
from rakhimart.utils.token import CurrentUser, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()

HEARTBEAT_SECONDS = 15.0


def order_out(order: Order, items) -> OrderOut:
    tracking_url = None
    if order.tracking_number and order.delivery_partner:
        tracking_url = tracking_url_for(order.delivery_partner, order.tracking_number) or None

    return OrderOut.model_validate({
        **order.model_dump(),
        "items": [OrderItemOut.model_validate(i) for i in items],
        "tracking_url": tracking_url,
    })


def tracking_out(result: TrackingResult) -> TrackingOut:
    order = result.order
    info = result.info

    return TrackingOut(
        order_number=order.order_number,
        status=order.status,
        delivery_partner=order.delivery_partner,
        tracking_number=order.tracking_number,
        tracking_url=(
            tracking_url_for(order.delivery_partner, order.tracking_number) or None
            if order.tracking_number
            else None
        ),
        courier_status=info.status if info else None,
        location=info.location if info else None,
        estimated_delivery=(info.estimated_delivery if info else None) or order.estimated_delivery,
        tracking_error=result.error,
    )


def sse_events(
    subscription: Subscription,
    heartbeat: float = HEARTBEAT_SECONDS,
    max_events: Optional[int] = None,
) -> Iterator[str]:
    """Server-sent events framing for order snapshots, with keep-alive comments."""
    sent = 0
    try:
        while max_events is None or sent < max_events:
            snapshot = subscription.get(timeout=heartbeat)
            if snapshot is None:
                yield ": keep-alive\n\n"
                continue

            yield f"event: order\ndata: {json.dumps(snapshot)}\n\n"
            sent += 1
    finally:
        subscription.close()


def _own_order(session: Session, order_number: str, user: CurrentUser) -> Order:
    order = OrderRepository(session).get_by_number(order_number)

    # other customers' orders look the same as missing ones
    if not order or (order.user_id != user.id and not user.is_admin):
        raise HTTPException(status_code=404, detail="Order not found")

    return order


@router.get("", response_model=List[OrderSummaryOut])
def list_my_orders(
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    return OrderRepository(session).list_for_user(current_user.id)


@router.get("/stream")
def stream_my_orders(
    current_user: CurrentUser = Depends(get_current_user),
    feed=Depends(get_order_feed),
):
    subscription = feed.subscribe(user_id=current_user.id)
    logger.info(f"Order stream opened for user {current_user.id}")

    return StreamingResponse(
        sse_events(subscription),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{order_number}", response_model=OrderOut)
def get_my_order(
    order_number: str,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
):
    order = _own_order(session, order_number, current_user)
    return order_out(order, OrderRepository(session).items_for(order.id))


@router.get("/{order_number}/tracking", response_model=TrackingOut)
def track_my_order(
    order_number: str,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    current_user: CurrentUser = Depends(get_current_user),
    courier_factory=Depends(get_courier_factory),
    notifier=Depends(get_notifier),
    feed=Depends(get_order_feed),
):
    order = _own_order(session, order_number, current_user)
    result = ShipmentService(session, courier_factory, feed).track(order, actor="customer-tracking")

    if result.transition and result.transition.notification:
        background_tasks.add_task(notifier.deliver, result.transition.notification)

    return tracking_out(result)
