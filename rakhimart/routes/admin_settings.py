import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from rakhimart.database import get_session
from rakhimart.dependencies.admin import require_admin
from rakhimart.schemas.admin_settings_schemas import DeliveryChargesUpdate, ShippingSettingsUpdate
from rakhimart.services.delivery_service import TRACKING_URLS
from rakhimart.services.settings_service import (
    DeliverySettings,
    PickupAddress,
    load_delivery_settings,
    load_shipping_settings,
    save_delivery_settings,
    save_shipping_settings,
)
from rakhimart.utils.token import CurrentUser

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/delivery-charges")
def get_delivery_charges(
    session: Session = Depends(get_session),
    _: CurrentUser = Depends(require_admin),
):
    return load_delivery_settings(session).model_dump()


@router.put("/delivery-charges")
def update_delivery_charges(
    payload: DeliveryChargesUpdate,
    session: Session = Depends(get_session),
    _: CurrentUser = Depends(require_admin),
):
    delivery = save_delivery_settings(
        session,
        DeliverySettings(
            flat_delivery_charge=payload.flat_delivery_charge,
            free_delivery_threshold=payload.free_delivery_threshold,
        ),
    )
    return delivery.model_dump()


@router.get("/shipping")
def get_shipping_settings(
    session: Session = Depends(get_session),
    _: CurrentUser = Depends(require_admin),
):
    return {
        **load_shipping_settings(session).model_dump(),
        "available_providers": sorted(TRACKING_URLS),
    }


@router.put("/shipping")
def update_shipping_settings(
    payload: ShippingSettingsUpdate,
    session: Session = Depends(get_session),
    _: CurrentUser = Depends(require_admin),
):
    shipping = load_shipping_settings(session)

    if payload.provider is not None:
        if payload.provider.lower() not in TRACKING_URLS:
            raise HTTPException(400, f"Unknown delivery partner {payload.provider}")
        shipping.provider = payload.provider.lower()

    if payload.pickup_address is not None:
        shipping.pickup_address = PickupAddress(**payload.pickup_address.model_dump())

    return save_shipping_settings(session, shipping).model_dump()
