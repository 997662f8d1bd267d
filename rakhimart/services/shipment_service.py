import logging
from dataclasses import dataclass
from typing import Optional

from sqlmodel import Session, select

from rakhimart.constants.order_status import SHIPPABLE, OrderStatus, PaymentStatus
from rakhimart.exceptions import CourierError, InvalidTransition, OrderNotFound
from rakhimart.models.order import Order
from rakhimart.models.product import Product
from rakhimart.repositories.order_repository import OrderRepository
from rakhimart.services.delivery_service import TrackingInfo, build_courier, build_shipment_data
from rakhimart.services.order_feed import OrderFeed, order_feed
from rakhimart.services.order_lifecycle import OrderLifecycle, TransitionResult
from rakhimart.services.order_state_machine import ShipmentCreated, ShipmentDelivered
from rakhimart.services.settings_service import load_shipping_settings

logger = logging.getLogger(__name__)


@dataclass
class TrackingResult:
    order: Order
    info: Optional[TrackingInfo] = None
    error: Optional[str] = None
    transition: Optional[TransitionResult] = None


class ShipmentService:
    def __init__(self, session: Session, courier_factory=build_courier, feed: OrderFeed = order_feed):
        self.session = session
        self.courier_factory = courier_factory
        self.repo = OrderRepository(session, feed)
        self.lifecycle = OrderLifecycle(session, feed)

    def _get(self, order_id: str) -> Order:
        order = self.repo.get_by_id(order_id)
        if not order:
            raise OrderNotFound(order_id)
        return order

    def attach_tracking(
        self,
        order_id: str,
        tracking_number: str,
        partner: str,
        awb_number: Optional[str] = None,
        estimated_delivery: Optional[str] = None,
        actor: str = "admin",
    ) -> TransitionResult:
        self._get(order_id)
        return self.lifecycle.apply(
            ShipmentCreated(
                order_id=order_id,
                tracking_number=tracking_number.strip(),
                partner=partner.strip().lower(),
                eta=estimated_delivery,
                awb_number=awb_number,
            ),
            actor=actor,
        )

    def create_shipment(
        self,
        order_id: str,
        partner: Optional[str] = None,
        actor: str = "admin",
    ) -> TransitionResult:
        """Book the parcel with a courier, then mark the order shipped."""
        order = self._get(order_id)

        # checked before the courier call so nothing is booked for an unshippable order
        if order.payment_status != PaymentStatus.completed.value:
            raise InvalidTransition(order.status, OrderStatus.shipped.value, f"payment is {order.payment_status}")
        if OrderStatus(order.status) not in SHIPPABLE:
            raise InvalidTransition(order.status, OrderStatus.shipped.value)

        shipping = load_shipping_settings(self.session)
        provider = (partner or shipping.provider).lower()
        courier = self.courier_factory(provider)

        items = self.repo.items_for(order.id)
        weights = {
            p.id: p.weight_grams
            for p in self.session.exec(
                select(Product).where(Product.id.in_([i.product_id for i in items]))
            ).all()
        }

        data = build_shipment_data(order, items, shipping.pickup_address.model_dump(), weights)
        receipt = courier.create_shipment(data)
        logger.info(f"{provider} booked {receipt.tracking_number} for {order.order_number}")

        return self.lifecycle.apply(
            ShipmentCreated(
                order_id=order.id,
                tracking_number=receipt.tracking_number,
                partner=provider,
                eta=receipt.estimated_delivery,
                awb_number=receipt.awb_number,
            ),
            actor=actor,
        )

    def track(self, order: Order, actor: str = "tracking") -> TrackingResult:
        """
        Pull the courier's status. A delivered parcel moves the order to
        delivered; courier failures are reported, never raised.
        """
        if not order.tracking_number or not order.delivery_partner:
            return TrackingResult(order=order)

        try:
            courier = self.courier_factory(order.delivery_partner)
            info = courier.track_shipment(order.tracking_number)
        except CourierError as exc:
            logger.warning(f"Tracking {order.order_number} via {order.delivery_partner} failed: {exc}")
            return TrackingResult(order=order, error=str(exc))

        transition = None

        if info.delivered and order.status == OrderStatus.shipped.value:
            transition = self.lifecycle.apply(ShipmentDelivered(order_id=order.id), actor=actor)
            order = transition.order

        elif info.estimated_delivery and info.estimated_delivery != order.estimated_delivery:
            updated = self.repo.update_if(
                order.id,
                {"status": order.status, "tracking_number": order.tracking_number},
                {"estimated_delivery": info.estimated_delivery},
            )
            if updated:
                self.session.refresh(order)

        return TrackingResult(order=order, info=info, transition=transition)
