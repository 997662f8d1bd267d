from fastapi import HTTPException

from rakhimart.exceptions import (
    CheckoutValidationError,
    IntegrationError,
    InvalidTransition,
    MalformedWebhook,
    OrderNotFound,
    WebhookVerificationError,
)


def http_error(exc: Exception) -> HTTPException:
    """Map a service error onto the response the API returns for it."""
    if isinstance(exc, OrderNotFound):
        return HTTPException(status_code=404, detail=str(exc))

    if isinstance(exc, CheckoutValidationError):
        return HTTPException(status_code=exc.status_code, detail=str(exc))

    if isinstance(exc, InvalidTransition):
        return HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "current_status": exc.current,
                "requested_status": exc.target,
            },
        )

    if isinstance(exc, (WebhookVerificationError, MalformedWebhook)):
        return HTTPException(status_code=400, detail=str(exc))

    if isinstance(exc, IntegrationError):
        return HTTPException(
            status_code=503 if exc.retryable else 502,
            detail={"message": str(exc), "provider": exc.provider, "retryable": exc.retryable},
        )

    return HTTPException(status_code=500, detail="Internal server error")
