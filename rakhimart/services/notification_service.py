import logging
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Session, select

from rakhimart.models.operator_alert import AlertKind, OperatorAlert

logger = logging.getLogger(__name__)


def create_operator_alert(
    *,
    session: Session,
    kind: AlertKind,
    order_number: Optional[str],
    detail: str,
    meta: Optional[dict] = None,
    commit: bool = True,
) -> OperatorAlert:
    """
    Queue an issue that needs a human: partial writes, undelivered email,
    failed account provisioning, stock shortfalls.
    """
    alert = OperatorAlert(
        kind=AlertKind(kind).value,
        order_number=order_number,
        detail=detail,
        meta=meta,
    )
    session.add(alert)

    if commit:
        session.commit()
        session.refresh(alert)
    else:
        session.flush()

    logger.warning(f"Operator alert [{alert.kind}] order={order_number}: {detail}")
    return alert


def list_open_alerts(session: Session, kind: Optional[str] = None):
    query = select(OperatorAlert).where(OperatorAlert.resolved == False)  # noqa: E712

    if kind:
        query = query.where(OperatorAlert.kind == kind)

    return session.exec(query.order_by(OperatorAlert.created_at.desc())).all()


def resolve_alert(session: Session, alert_id: int) -> Optional[OperatorAlert]:
    alert = session.get(OperatorAlert, alert_id)
    if not alert:
        return None

    alert.resolved = True
    alert.resolved_at = datetime.now(timezone.utc)
    session.add(alert)
    session.commit()
    session.refresh(alert)
    return alert


def resolve_email_alerts(session: Session, email_log_id: int) -> list:
    """Close the email_failed alerts raised for one email log row."""
    open_alerts = list_open_alerts(session, kind=AlertKind.email_failed.value)
    # meta is plain JSON, so match in Python rather than per-dialect JSON operators
    matching = [a for a in open_alerts if (a.meta or {}).get("email_log_id") == email_log_id]

    now = datetime.now(timezone.utc)
    for alert in matching:
        alert.resolved = True
        alert.resolved_at = now
        session.add(alert)

    if matching:
        session.commit()
    return matching
