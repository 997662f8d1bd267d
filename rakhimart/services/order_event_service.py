# rakhimart/services/order_event_service.py

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4
from sqlmodel import Session, select
from rakhimart.models.order_event import OrderEvent


def log_order_event(
    session: Session,
    order_id: str,
    event_type: str,
    label: str,
    created_by: str = "system",
    meta: Optional[dict] = None,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
) -> OrderEvent:
    """
    Append-only event log for order timeline. Caller commits.
    """

    event = OrderEvent(
        id=str(uuid4()),
        order_id=order_id,
        event_type=event_type,
        from_status=from_status,
        to_status=to_status,
        label=label,
        meta=meta,
        created_by=created_by,
        created_at=datetime.now(timezone.utc),
    )

    session.add(event)
    return event


def order_timeline(session: Session, order_id: str):
    return session.exec(
        select(OrderEvent)
        .where(OrderEvent.order_id == order_id)
        .order_by(OrderEvent.created_at)
    ).all()
