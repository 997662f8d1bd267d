"""
Courier integrations.

Every courier exposes the same three operations; the admin picks a courier
(or the store default) and the order state machine never knows which one
was used.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional, Protocol

import requests

from rakhimart.config import settings
from rakhimart.exceptions import CourierError, CourierUnsupportedOperation, is_retryable_status

logger = logging.getLogger(__name__)

DEFAULT_ITEM_WEIGHT_GRAMS = 500
MIN_WEIGHT_KG = 0.5
BOX_CM = 10

TRACKING_URLS = {
    "delhivery": "https://www.delhivery.com/track/package/",
    "shiprocket": "https://shiprocket.co/tracking/",
    "bluedart": "https://www.bluedart.com/tracking?trackingNumber=",
    "dtdc": "https://www.dtdc.in/tracking?trackingNumber=",
}

PARTNER_NAMES = {
    "delhivery": "Delhivery",
    "shiprocket": "Shiprocket",
    "bluedart": "Blue Dart",
    "dtdc": "DTDC",
}


def tracking_url_for(partner: str, tracking_number: str) -> str:
    base = TRACKING_URLS.get((partner or "").lower())
    return f"{base}{tracking_number}" if base else ""


@dataclass(frozen=True)
class ShipmentItem:
    name: str
    quantity: int
    price: Decimal
    weight_grams: int = DEFAULT_ITEM_WEIGHT_GRAMS


@dataclass(frozen=True)
class ShipmentData:
    order_number: str
    customer_name: str
    customer_phone: str
    customer_email: str
    pickup_address: dict
    delivery_address: dict
    items: List[ShipmentItem] = field(default_factory=list)
    payment_mode: str = "Prepaid"
    cod_amount: Decimal = Decimal("0")

    @property
    def total_weight_grams(self) -> int:
        return sum(i.weight_grams * i.quantity for i in self.items)

    @property
    def weight_kg(self) -> float:
        return max(self.total_weight_grams / 1000, MIN_WEIGHT_KG)

    @property
    def total_value(self) -> Decimal:
        return sum((Decimal(i.price) * i.quantity for i in self.items), Decimal("0"))

    @property
    def total_quantity(self) -> int:
        return sum(i.quantity for i in self.items)


@dataclass(frozen=True)
class ShipmentReceipt:
    tracking_number: str
    awb_number: Optional[str] = None
    estimated_delivery: Optional[str] = None


@dataclass(frozen=True)
class TrackingInfo:
    status: str
    location: Optional[str] = None
    estimated_delivery: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return (self.status or "").strip().lower() == "delivered"


class Courier(Protocol):
    name: str
    capabilities: FrozenSet[str]

    def create_shipment(self, data: ShipmentData) -> ShipmentReceipt:
        ...

    def track_shipment(self, tracking_number: str) -> TrackingInfo:
        ...

    def get_tracking_url(self, tracking_number: str) -> str:
        ...


def build_shipment_data(order, items, pickup: dict, weights: Optional[Dict[int, int]] = None) -> ShipmentData:
    """Snapshot of the order as a courier needs it; ``weights`` maps product id to grams."""
    weights = weights or {}
    address = order.shipping_address or {}
    street = ", ".join(
        part for part in (address.get("address_line_1"), address.get("address_line_2")) if part
    )

    return ShipmentData(
        order_number=order.order_number,
        customer_name=address.get("name") or order.customer_name,
        customer_phone=address.get("phone") or order.customer_phone,
        customer_email=order.customer_email,
        pickup_address=pickup,
        delivery_address={
            "name": address.get("name") or order.customer_name,
            "phone": address.get("phone") or order.customer_phone,
            "address": street,
            "city": address.get("city", ""),
            "state": address.get("state", ""),
            "pincode": address.get("postal_code", ""),
        },
        items=[
            ShipmentItem(
                name=item.product_name,
                quantity=item.quantity,
                price=item.price,
                weight_grams=weights.get(item.product_id) or DEFAULT_ITEM_WEIGHT_GRAMS,
            )
            for item in items
        ],
    )


class HttpCourier:
    name = "http"
    capabilities: FrozenSet[str] = frozenset({"create", "track", "url"})

    def __init__(self, api_key: str, api_secret: Optional[str] = None, timeout: float = 10.0):
        if not api_key:
            raise CourierError(
                f"{self.name} credentials not configured", retryable=False, provider=self.name
            )
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout

    def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = requests.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise CourierError(
                f"{self.name} unreachable: {exc}", retryable=True, provider=self.name
            ) from exc

        if response.status_code >= 400:
            raise CourierError(
                f"{self.name} error ({response.status_code}): {response.text}",
                retryable=is_retryable_status(response.status_code),
                provider=self.name,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise CourierError(
                f"{self.name} returned invalid JSON", retryable=True, provider=self.name
            ) from exc

    def get_tracking_url(self, tracking_number: str) -> str:
        return tracking_url_for(self.name, tracking_number)


class DelhiveryCourier(HttpCourier):
    name = "delhivery"
    create_url = "https://track.delhivery.com/api/cmu/create.json"
    track_url = "https://track.delhivery.com/api/v1/packages/json/"

    @property
    def headers(self) -> dict:
        return {"Content-Type": "application/json", "Authorization": f"Token {self.api_key}"}

    def create_shipment(self, data: ShipmentData) -> ShipmentReceipt:
        pickup = data.pickup_address
        delivery = data.delivery_address

        payload = {
            "shipments": [{
                "name": data.customer_name,
                "add": delivery["address"],
                "pin": delivery["pincode"],
                "city": delivery["city"],
                "state": delivery["state"],
                "country": "India",
                "phone": data.customer_phone,
                "order": data.order_number,
                "payment_mode": data.payment_mode,
                "return_pin": pickup.get("pincode", ""),
                "return_city": pickup.get("city", ""),
                "return_phone": pickup.get("phone", ""),
                "return_add": pickup.get("address", ""),
                "return_state": pickup.get("state", ""),
                "return_country": "India",
                "products_desc": ", ".join(i.name for i in data.items),
                "cod_amount": float(data.cod_amount),
                "order_date": datetime.now(timezone.utc).isoformat(),
                "total_amount": float(data.total_value),
                "seller_add": pickup.get("address", ""),
                "seller_name": pickup.get("name", ""),
                "quantity": data.total_quantity,
                "waybill": "",
                "shipment_width": BOX_CM,
                "shipment_height": BOX_CM,
                "weight": data.weight_kg,
                "shipping_mode": "Surface",
                "address_type": "home",
            }]
        }

        result = self._request("POST", self.create_url, json=payload, headers=self.headers)

        packages = result.get("packages") or []
        waybill = packages[0].get("waybill") if packages else None
        if not result.get("success") or not waybill:
            raise CourierError(
                result.get("rmk") or "Delhivery shipment creation failed",
                retryable=False,
                provider=self.name,
            )

        logger.info(f"Delhivery waybill {waybill} created for {data.order_number}")
        return ShipmentReceipt(tracking_number=waybill, awb_number=waybill)

    def track_shipment(self, tracking_number: str) -> TrackingInfo:
        result = self._request(
            "GET",
            self.track_url,
            params={"waybill": tracking_number},
            headers=self.headers,
        )

        shipments = result.get("ShipmentData") or []
        if not shipments:
            raise CourierError(
                f"No tracking data for {tracking_number}", retryable=False, provider=self.name
            )

        shipment = shipments[0]["Shipment"]
        status = shipment.get("Status") or {}
        return TrackingInfo(
            status=status.get("Status", "Unknown"),
            location=status.get("StatusLocation"),
            estimated_delivery=shipment.get("ExpectedDeliveryDate"),
        )


class ShiprocketCourier(HttpCourier):
    """``api_key``/``api_secret`` are the Shiprocket login email and password."""

    name = "shiprocket"
    base_url = "https://apiv2.shiprocket.in/v1/external"

    def __init__(self, api_key: str, api_secret: Optional[str] = None, timeout: float = 10.0):
        super().__init__(api_key, api_secret, timeout)
        self._token = None

    def _auth_headers(self) -> dict:
        if not self._token:
            result = self._request(
                "POST",
                f"{self.base_url}/auth/login",
                json={"email": self.api_key, "password": self.api_secret},
            )
            self._token = result.get("token")
            if not self._token:
                raise CourierError("Shiprocket login failed", retryable=False, provider=self.name)

        return {"Content-Type": "application/json", "Authorization": f"Bearer {self._token}"}

    def create_shipment(self, data: ShipmentData) -> ShipmentReceipt:
        delivery = data.delivery_address

        payload = {
            "order_id": data.order_number,
            "order_date": datetime.now(timezone.utc).strftime("%Y-%m-%d"),
            "pickup_location": "Primary",
            "billing_customer_name": data.customer_name,
            "billing_last_name": "",
            "billing_address": delivery["address"],
            "billing_city": delivery["city"],
            "billing_pincode": delivery["pincode"],
            "billing_state": delivery["state"],
            "billing_country": "India",
            "billing_email": data.customer_email,
            "billing_phone": data.customer_phone,
            "shipping_is_billing": True,
            "order_items": [
                {
                    "name": item.name,
                    "sku": "SKU-" + "-".join(item.name.split()),
                    "units": item.quantity,
                    "selling_price": float(item.price),
                    "discount": 0,
                    "tax": 0,
                    "hsn": 0,
                }
                for item in data.items
            ],
            "payment_method": "COD" if data.payment_mode == "COD" else "Prepaid",
            "sub_total": float(data.total_value),
            "length": BOX_CM,
            "breadth": BOX_CM,
            "height": BOX_CM,
            "weight": data.weight_kg,
        }

        result = self._request(
            "POST",
            f"{self.base_url}/orders/create/adhoc",
            json=payload,
            headers=self._auth_headers(),
        )

        if not result.get("order_id") or not result.get("shipment_id"):
            raise CourierError(
                result.get("message") or "Shiprocket shipment creation failed",
                retryable=False,
                provider=self.name,
            )

        shipment_id = str(result["shipment_id"])
        logger.info(f"Shiprocket shipment {shipment_id} created for {data.order_number}")
        return ShipmentReceipt(
            tracking_number=shipment_id,
            awb_number=result.get("awb_code") or None,
        )

    def track_shipment(self, tracking_number: str) -> TrackingInfo:
        result = self._request(
            "GET",
            f"{self.base_url}/courier/track/awb/{tracking_number}",
            headers=self._auth_headers(),
        )

        tracking = result.get("tracking_data") or {}
        statuses = tracking.get("track_status") or []
        if not statuses:
            raise CourierError(
                f"No tracking data for {tracking_number}", retryable=False, provider=self.name
            )

        latest = statuses[0]
        return TrackingInfo(
            status=latest.get("current_status", "Unknown"),
            location=latest.get("current_location"),
            estimated_delivery=tracking.get("expected_delivery_date"),
        )


class ManualCourier:
    """Couriers without an integration; tracking is attached by hand."""

    name = "manual"
    capabilities: FrozenSet[str] = frozenset({"url"})

    def create_shipment(self, data: ShipmentData) -> ShipmentReceipt:
        raise CourierUnsupportedOperation(self.name, "shipment creation")

    def track_shipment(self, tracking_number: str) -> TrackingInfo:
        raise CourierUnsupportedOperation(self.name, "tracking")

    def get_tracking_url(self, tracking_number: str) -> str:
        return tracking_url_for(self.name, tracking_number)


class BlueDartCourier(ManualCourier):
    name = "bluedart"


class DtdcCourier(ManualCourier):
    name = "dtdc"


def build_courier(provider: Optional[str] = None, config=settings) -> Courier:
    provider = (provider or config.DELIVERY_PROVIDER).lower()
    timeout = config.HTTP_TIMEOUT_SECONDS

    if provider == "delhivery":
        return DelhiveryCourier(config.DELIVERY_API_KEY, timeout=timeout)
    if provider == "shiprocket":
        return ShiprocketCourier(config.DELIVERY_API_KEY, config.DELIVERY_API_SECRET, timeout=timeout)
    if provider == "bluedart":
        return BlueDartCourier()
    if provider == "dtdc":
        return DtdcCourier()

    raise CourierError(f"Unsupported delivery partner: {provider}", retryable=False, provider=provider)
