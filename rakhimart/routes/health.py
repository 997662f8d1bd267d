import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, text

from rakhimart.config import settings
from rakhimart.database import get_session

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/check")
def health_check(session: Session = Depends(get_session)):
    db_status = "ok"

    try:
        # simple DB ping
        session.exec(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error(f"Health check database ping failed: {exc}")
        db_status = "failed"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "database": db_status,
        "payment_provider": settings.PAYMENT_PROVIDER,
        "delivery_provider": settings.DELIVERY_PROVIDER,
        "email_provider": settings.EMAIL_PROVIDER,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
