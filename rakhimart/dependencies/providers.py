"""
External collaborators, built once from settings.

Routes depend on these rather than on the factories so tests can swap in
fakes through ``app.dependency_overrides``.
"""

from functools import lru_cache

from sqlmodel import Session

from rakhimart.database import engine
from rakhimart.notifications.dispatcher import OrderNotifier
from rakhimart.services.account_service import build_account_provisioner
from rakhimart.services.delivery_service import build_courier, tracking_url_for
from rakhimart.services.email_service import Mailer, build_email_provider
from rakhimart.services.order_feed import order_feed
from rakhimart.services.payment_gateway import build_payment_gateway


@lru_cache()
def get_payment_gateway():
    return build_payment_gateway()


def get_courier_factory():
    return build_courier


@lru_cache()
def get_notifier() -> OrderNotifier:
    return OrderNotifier(
        Mailer(build_email_provider()),
        session_factory=lambda: Session(engine),
        tracking_url_for=tracking_url_for,
    )


@lru_cache()
def get_account_provisioner():
    return build_account_provisioner()


def get_order_feed():
    return order_feed
