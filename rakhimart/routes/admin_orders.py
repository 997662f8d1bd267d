# -------- ADMIN ORDERS --------
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlmodel import Session

from rakhimart.constants.order_status import OrderStatus
from rakhimart.database import get_session
from rakhimart.dependencies.admin import require_admin
from rakhimart.dependencies.providers import get_courier_factory, get_notifier, get_order_feed
from rakhimart.exceptions import RakhiMartError
from rakhimart.repositories.order_repository import OrderRepository
from rakhimart.routes.user_orders import order_out, tracking_out
from rakhimart.schemas.orders_schemas import OrderEventOut, OrderOut, OrderSummaryOut, TrackingOut
from rakhimart.schemas.shipment_schemas import ShipmentCreate, StatusUpdate, TrackingAttach
from rakhimart.services.order_event_service import order_timeline
from rakhimart.services.order_lifecycle import OrderLifecycle, TransitionResult
from rakhimart.services.order_state_machine import AdminSetStatus
from rakhimart.services.shipment_service import ShipmentService
from rakhimart.utils.errors import http_error
from rakhimart.utils.token import CurrentUser

logger = logging.getLogger(__name__)

router = APIRouter()


def _transition_response(
    session: Session,
    result: TransitionResult,
    background_tasks: BackgroundTasks,
    notifier,
) -> dict:
    if result.notification:
        background_tasks.add_task(notifier.deliver, result.notification)

    order = result.order
    return {
        "applied": result.applied,
        "reason": result.decision.reason,
        "order": order_out(order, OrderRepository(session).items_for(order.id)),
    }


@router.get("")
def list_orders(
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    session: Session = Depends(get_session),
    _: CurrentUser = Depends(require_admin),
):
    return OrderRepository(session).list(
        status=status.value if status else None,
        search=search,
        page=page,
        limit=limit,
        serialize=OrderSummaryOut.model_validate,
    )


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    session: Session = Depends(get_session),
    _: CurrentUser = Depends(require_admin),
):
    repo = OrderRepository(session)
    order = repo.get_by_id(order_id)

    if not order:
        raise HTTPException(404, "Order not found")

    return order_out(order, repo.items_for(order.id))


@router.get("/{order_id}/events", response_model=List[OrderEventOut])
def get_order_events(
    order_id: str,
    session: Session = Depends(get_session),
    _: CurrentUser = Depends(require_admin),
):
    if not OrderRepository(session).get_by_id(order_id):
        raise HTTPException(404, "Order not found")

    return order_timeline(session, order_id)


@router.patch("/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: StatusUpdate,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
    notifier=Depends(get_notifier),
    feed=Depends(get_order_feed),
):
    try:
        result = OrderLifecycle(session, feed).apply(
            AdminSetStatus(order_id=order_id, new_status=payload.status),
            actor=f"admin:{admin.id}",
        )
    except RakhiMartError as exc:
        raise http_error(exc)

    return _transition_response(session, result, background_tasks, notifier)


@router.post("/{order_id}/tracking")
def attach_tracking(
    order_id: str,
    payload: TrackingAttach,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
    courier_factory=Depends(get_courier_factory),
    notifier=Depends(get_notifier),
    feed=Depends(get_order_feed),
):
    """Manual shipping: record a parcel booked outside the integrations."""
    try:
        result = ShipmentService(session, courier_factory, feed).attach_tracking(
            order_id,
            payload.tracking_number,
            payload.delivery_partner,
            awb_number=payload.awb_number,
            estimated_delivery=payload.estimated_delivery,
            actor=f"admin:{admin.id}",
        )
    except RakhiMartError as exc:
        raise http_error(exc)

    return _transition_response(session, result, background_tasks, notifier)


@router.post("/{order_id}/shipment")
def create_shipment(
    order_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[ShipmentCreate] = None,
    session: Session = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
    courier_factory=Depends(get_courier_factory),
    notifier=Depends(get_notifier),
    feed=Depends(get_order_feed),
):
    partner = payload.delivery_partner if payload else None

    try:
        result = ShipmentService(session, courier_factory, feed).create_shipment(
            order_id,
            partner=partner,
            actor=f"admin:{admin.id}",
        )
    except RakhiMartError as exc:
        raise http_error(exc)

    return _transition_response(session, result, background_tasks, notifier)


@router.get("/{order_id}/tracking", response_model=TrackingOut)
def track_order(
    order_id: str,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
    courier_factory=Depends(get_courier_factory),
    notifier=Depends(get_notifier),
    feed=Depends(get_order_feed),
):
    order = OrderRepository(session).get_by_id(order_id)
    if not order:
        raise HTTPException(404, "Order not found")

    result = ShipmentService(session, courier_factory, feed).track(order, actor=f"admin:{admin.id}")

    if result.transition and result.transition.notification:
        background_tasks.add_task(notifier.deliver, result.transition.notification)

    return tracking_out(result)
