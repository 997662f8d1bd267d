"""
Error types raised by the order services.

Routes translate these into HTTP responses; nothing below knows about HTTP.
Integration errors carry a ``retryable`` flag: timeouts, connection errors
and 5xx answers are safe to re-invoke, 4xx answers and bad configuration
are not.
"""

from typing import Optional


class RakhiMartError(Exception):
    """Base class for every error raised by the order services."""


class OrderNotFound(RakhiMartError):
    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Order {reference} not found")


class CheckoutValidationError(RakhiMartError):
    """Cart or address rejected before anything is written."""

    def __init__(self, message: str, status_code: int = 400):
        self.status_code = status_code
        super().__init__(message)


class InvalidTransition(RakhiMartError):
    def __init__(self, current: str, target: str, reason: str = ""):
        self.current = current
        self.target = target
        self.reason = reason
        message = f"Cannot move order from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class WebhookVerificationError(RakhiMartError):
    """Signature or timestamp check failed; payload must not be trusted."""


class MalformedWebhook(RakhiMartError):
    """Signature checked out but the envelope is not one we understand."""


class IntegrationError(RakhiMartError):
    provider: str = "unknown"

    def __init__(
        self,
        message: str,
        *,
        retryable: bool,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.retryable = retryable
        self.status_code = status_code
        if provider:
            self.provider = provider
        super().__init__(message)


class PaymentGatewayError(IntegrationError):
    pass


class CourierError(IntegrationError):
    pass


class CourierUnsupportedOperation(CourierError):
    def __init__(self, provider: str, operation: str):
        super().__init__(
            f"{provider} does not support {operation}; attach tracking manually",
            retryable=False,
            provider=provider,
        )


class EmailProviderError(IntegrationError):
    pass


class AccountProvisioningError(IntegrationError):
    pass


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429
