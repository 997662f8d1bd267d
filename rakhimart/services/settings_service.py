import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session

from rakhimart.config import settings
from rakhimart.models.app_setting import AppSetting

logger = logging.getLogger(__name__)

DELIVERY_CHARGE_KEY = "delivery_charge_settings"
SHIPPING_KEY = "delivery_settings"


class DeliverySettings(BaseModel):
    """
    Store-wide delivery pricing. Stored camelCase so rows written by the
    storefront admin stay readable.
    """

    model_config = ConfigDict(populate_by_name=True)

    flat_delivery_charge: Decimal = Field(Decimal("50"), alias="flatDeliveryCharge", ge=0)
    free_delivery_threshold: Decimal = Field(Decimal("499"), alias="freeDeliveryThreshold", ge=0)

    def shipping_charge(self, subtotal: Decimal) -> Decimal:
        if subtotal >= self.free_delivery_threshold:
            return Decimal("0.00")
        return Decimal(self.flat_delivery_charge).quantize(Decimal("0.01"))


class PickupAddress(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(settings.STORE_NAME)
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    country: str = "India"


class ShippingSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: str = Field(settings.DELIVERY_PROVIDER)
    pickup_address: PickupAddress = Field(default_factory=PickupAddress, alias="pickupAddress")


def _read(session: Session, key: str) -> Optional[dict]:
    row = session.get(AppSetting, key)
    return row.value if row else None


def _write(session: Session, key: str, value: dict):
    row = session.get(AppSetting, key)

    if not row:
        row = AppSetting(key=key, value=value)
    else:
        row.value = value
        row.updated_at = datetime.now(timezone.utc)

    session.add(row)
    session.commit()


def load_delivery_settings(session: Session) -> DeliverySettings:
    value = _read(session, DELIVERY_CHARGE_KEY)
    if not value:
        return DeliverySettings()
    return DeliverySettings.model_validate(value)


def save_delivery_settings(session: Session, delivery: DeliverySettings) -> DeliverySettings:
    _write(session, DELIVERY_CHARGE_KEY, delivery.model_dump(mode="json", by_alias=True))
    logger.info(
        f"Delivery charges updated: flat={delivery.flat_delivery_charge} "
        f"free_above={delivery.free_delivery_threshold}"
    )
    return delivery


def load_shipping_settings(session: Session) -> ShippingSettings:
    value = _read(session, SHIPPING_KEY)
    if not value:
        return ShippingSettings()
    return ShippingSettings.model_validate(value)


def save_shipping_settings(session: Session, shipping: ShippingSettings) -> ShippingSettings:
    _write(session, SHIPPING_KEY, shipping.model_dump(mode="json", by_alias=True))
    logger.info(f"Shipping settings updated: provider={shipping.provider}")
    return shipping
