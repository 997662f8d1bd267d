import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlmodel import Session

from rakhimart.database import get_session
from rakhimart.dependencies.providers import get_notifier, get_order_feed
from rakhimart.exceptions import MalformedWebhook, WebhookVerificationError
from rakhimart.services.webhook_service import WebhookOutcome, WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


async def raw_body(request: Request) -> bytes:
    # signatures are computed over the exact bytes sent
    return await request.body()


def _respond(outcome: WebhookOutcome, background_tasks: BackgroundTasks, notifier) -> dict:
    if outcome.notification:
        # runs after the response; email trouble never reaches the gateway
        background_tasks.add_task(notifier.deliver, outcome.notification)

    return {
        "success": True,
        "event": outcome.event_type,
        "order_number": outcome.order_number,
        "applied": outcome.applied,
        "reason": outcome.reason,
    }


@router.post("/cashfree")
def cashfree_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    body: bytes = Depends(raw_body),
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
    feed=Depends(get_order_feed),
):
    try:
        outcome = WebhookReconciler(session, feed).handle_cashfree(
            body,
            request.headers.get("x-webhook-signature"),
            request.headers.get("x-webhook-timestamp"),
        )
    except (WebhookVerificationError, MalformedWebhook) as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return _respond(outcome, background_tasks, notifier)


@router.post("/razorpay")
def razorpay_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    body: bytes = Depends(raw_body),
    session: Session = Depends(get_session),
    notifier=Depends(get_notifier),
    feed=Depends(get_order_feed),
):
    try:
        outcome = WebhookReconciler(session, feed).handle_razorpay(
            body,
            request.headers.get("x-razorpay-signature"),
        )
    except (WebhookVerificationError, MalformedWebhook) as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return _respond(outcome, background_tasks, notifier)
