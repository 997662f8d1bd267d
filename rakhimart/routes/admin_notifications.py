# -------- ADMIN NOTIFICATIONS --------
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from rakhimart.database import get_session
from rakhimart.dependencies.admin import require_admin
from rakhimart.dependencies.providers import get_notifier
from rakhimart.models.email import EmailLog
from rakhimart.services.notification_service import list_open_alerts, resolve_alert, resolve_email_alerts
from rakhimart.utils.pagination import paginate
from rakhimart.utils.token import CurrentUser

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/alerts")
def get_alerts(
    kind: Optional[str] = None,
    session: Session = Depends(get_session),
    _: CurrentUser = Depends(require_admin),
):
    """Open follow-ups: partial writes, failed emails, stock shortfalls."""
    return list_open_alerts(session, kind=kind)


@router.post("/alerts/{alert_id}/resolve")
def resolve(
    alert_id: int,
    session: Session = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
):
    alert = resolve_alert(session, alert_id)
    if not alert:
        raise HTTPException(404, "Alert not found")

    logger.info(f"Alert {alert_id} resolved by {admin.id}")
    return alert


@router.get("/emails")
def get_email_log(
    status: Optional[str] = None,
    order_number: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    session: Session = Depends(get_session),
    _: CurrentUser = Depends(require_admin),
):
    query = select(EmailLog)

    if status:
        query = query.where(EmailLog.status == status)
    if order_number:
        query = query.where(EmailLog.order_number == order_number)

    query = query.order_by(EmailLog.created_at.desc())
    return paginate(session=session, query=query, page=page, limit=limit)


@router.post("/emails/{log_id}/resend")
def resend_email(
    log_id: int,
    session: Session = Depends(get_session),
    admin: CurrentUser = Depends(require_admin),
    notifier=Depends(get_notifier),
):
    log = session.get(EmailLog, log_id)
    if not log:
        raise HTTPException(404, "Email not found")

    logger.info(f"Resending email {log_id} ({log.template_kind}) for {log.order_number}, requested by {admin.id}")
    retry = notifier.resend(session, log)

    if retry.status == "sent":
        closed = resolve_email_alerts(session, log_id)
        if closed:
            logger.info(f"Resend of email {log_id} closed {len(closed)} alert(s)")

    return {
        "success": retry.status == "sent",
        "email_log_id": retry.id,
        "status": retry.status,
        "error": retry.error,
    }
