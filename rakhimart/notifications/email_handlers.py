"""
Transactional email templates.

Rendering is a pure function of its input: ``render_email(kind, data)``
returns subject, HTML and plain-text bodies and never sends anything.
``order_template_data`` flattens an order into the JSON-safe dict the
templates consume; the same dict is stored on the email log so a failed
message can be re-rendered and resent later.
"""

import re
from dataclasses import dataclass
from decimal import Decimal
from html import unescape
from typing import Iterable, Optional

from rakhimart.config import settings
from rakhimart.notifications.events import NotificationKind
from rakhimart.utils.template import render_template


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    html: str
    text: str


SUBJECTS = {
    NotificationKind.ORDER_CONFIRMATION: "Order Confirmation - #{order_number} | {store_name}",
    NotificationKind.SHIPPING_NOTIFICATION: "Your Order #{order_number} has been Shipped! | {store_name}",
    NotificationKind.DELIVERY_CONFIRMATION: "Your Order #{order_number} has been Delivered! | {store_name}",
}


def _money(value) -> str:
    return f"{Decimal(str(value)):.2f}"


def order_template_data(
    order,
    items: Iterable,
    tracking_url: Optional[str] = None,
) -> dict:
    items = list(items)
    return {
        "store_name": settings.STORE_NAME,
        "order_number": order.order_number,
        "customer_name": order.customer_name,
        "customer_email": order.customer_email,
        "created_at": order.created_at.strftime("%d %B %Y, %I:%M %p"),
        "items": [
            {
                "name": i.product_name,
                "quantity": i.quantity,
                "price": _money(i.price),
                "line_total": _money(Decimal(str(i.price)) * i.quantity),
            }
            for i in items
        ],
        "subtotal": _money(order.subtotal),
        "shipping_charge": _money(order.shipping_charge),
        "free_shipping": Decimal(str(order.shipping_charge)) == 0,
        "total_amount": _money(order.total_amount),
        "shipping_address": dict(order.shipping_address or {}),
        "tracking_number": order.tracking_number,
        "tracking_url": tracking_url,
        "delivery_partner": order.delivery_partner,
        "estimated_delivery": order.estimated_delivery,
        "delivered_at": (
            order.delivered_at.strftime("%d %B %Y") if order.delivered_at else None
        ),
    }


def render_email(kind, data: dict) -> EmailTemplate:
    kind = NotificationKind(kind)
    context = {"store_name": settings.STORE_NAME, **data}

    if kind == NotificationKind.CUSTOM:
        html = context["html"]
        return EmailTemplate(
            subject=context["subject"],
            html=html,
            text=context.get("text") or html_to_text(html),
        )

    subject = SUBJECTS[kind].format(
        order_number=context["order_number"],
        store_name=context["store_name"],
    )

    return EmailTemplate(
        subject=subject,
        html=render_template(f"emails/{kind.value}.html", **context),
        text=render_template(f"emails/{kind.value}.txt", **context).strip(),
    )


def html_to_text(html: str) -> str:
    text = re.sub(r"(?is)<(style|script)[^>]*>.*?</\1>", "", html)
    text = re.sub(r"(?i)<br\s*/?>", "\n", text)
    text = re.sub(r"(?i)</(p|div|h[1-6])>", "\n", text)
    text = re.sub(r"<[^>]+>", "", text)
    text = unescape(text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text)
    return text.strip()
