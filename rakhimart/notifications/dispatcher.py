import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlmodel import Session, select

from rakhimart.config import settings
from rakhimart.models.email import EmailLog
from rakhimart.models.operator_alert import AlertKind
from rakhimart.models.order import Order
from rakhimart.models.order_item import OrderItem
from rakhimart.notifications.channels import Channel
from rakhimart.notifications.email_handlers import order_template_data
from rakhimart.notifications.events import NotificationKind
from rakhimart.notifications.rules import NOTIFICATION_RULES
from rakhimart.services.notification_service import create_operator_alert

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingNotification:
    kind: NotificationKind
    order_id: str
    order_number: str


class OrderNotifier:
    """
    Central notification dispatcher.

    Runs after the order change has committed, usually as a background task.
    Failures are logged, written to the email log and queued for an
    operator; they never propagate back to the caller.
    """

    def __init__(
        self,
        mailer,
        session_factory: Callable[[], Session],
        tracking_url_for: Optional[Callable[[str, str], str]] = None,
        admin_emails: Optional[List[str]] = None,
    ):
        self.mailer = mailer
        self.session_factory = session_factory
        self.tracking_url_for = tracking_url_for
        self.admin_emails = settings.ADMIN_EMAILS if admin_emails is None else admin_emails

    def deliver(self, notification: PendingNotification) -> List[EmailLog]:
        try:
            with self.session_factory() as session:
                logs = self._deliver(session, notification)
                # later commits expired the earlier rows; load them before the session closes
                for log in logs:
                    session.refresh(log)
                return logs
        except Exception:
            logger.exception(
                f"Notification {notification.kind.value} failed for order {notification.order_number}"
            )
            return []

    def _deliver(self, session: Session, notification: PendingNotification) -> List[EmailLog]:
        order = session.get(Order, notification.order_id)
        if not order:
            logger.error(f"Order {notification.order_number} vanished before {notification.kind.value} email")
            return []

        items = session.exec(
            select(OrderItem).where(OrderItem.order_id == order.id).order_by(OrderItem.id)
        ).all()

        tracking_url = None
        if order.tracking_number and order.delivery_partner and self.tracking_url_for:
            tracking_url = self.tracking_url_for(order.delivery_partner, order.tracking_number)

        data = order_template_data(order, items, tracking_url)
        rules = NOTIFICATION_RULES.get(notification.kind, {})
        logs = []

        # -------------------------
        # USER EMAIL
        # -------------------------
        if rules.get(Channel.EMAIL_USER):
            logs.append(
                self._send(session, order.customer_email, notification.kind, data, order.order_number)
            )

        # -------------------------
        # ADMIN EMAIL
        # -------------------------
        if rules.get(Channel.EMAIL_ADMIN):
            for admin_email in self.admin_emails:
                logs.append(
                    self._send(session, admin_email, notification.kind, data, order.order_number)
                )

        return logs

    def resend(self, session: Session, log: EmailLog) -> EmailLog:
        """Operator-triggered resend of a logged message."""
        return self._send(
            session,
            log.to_email,
            NotificationKind(log.template_kind),
            log.template_data or {},
            log.order_number,
        )

    def _send(
        self,
        session: Session,
        to: str,
        kind: NotificationKind,
        data: dict,
        order_number: Optional[str],
    ) -> EmailLog:
        result = self.mailer.send(to, kind, data)

        log = EmailLog(
            order_number=order_number,
            template_kind=kind.value,
            to_email=to,
            subject=result.subject or kind.value,
            status="sent" if result.success else "failed",
            provider=result.provider,
            message_id=result.message_id,
            error=result.error,
            template_data=data,
        )
        session.add(log)
        session.commit()
        session.refresh(log)

        if result.success:
            logger.info(f"{kind.value} email for order {order_number} sent to {to}")
        else:
            logger.error(
                f"{kind.value} email for order {order_number} to {to} failed: {result.error}"
            )
            create_operator_alert(
                session=session,
                kind=AlertKind.email_failed,
                order_number=order_number,
                detail=f"{kind.value} email to {to} failed: {result.error}",
                meta={"email_log_id": log.id, "template_kind": kind.value},
            )

        return log
