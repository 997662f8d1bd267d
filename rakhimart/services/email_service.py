import logging
import re
import time
from dataclasses import dataclass, replace
from typing import Optional, Protocol

import requests

from rakhimart.config import settings
from rakhimart.exceptions import EmailProviderError, is_retryable_status
from rakhimart.notifications.email_handlers import render_email
from rakhimart.services.email_retry import send_email_with_retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    from_email: str
    from_name: str
    subject: str
    html: str
    text: str = ""


@dataclass(frozen=True)
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[str] = None
    subject: Optional[str] = None


class EmailProvider(Protocol):
    name: str

    def send(self, message: EmailMessage) -> EmailResult:
        ...


def is_valid_email(email):
    if not email:
        return False

    return re.match(r"[^@]+@[^@]+\.[^@]+", email) is not None


class HttpEmailProvider:
    name = "http"
    api_url = ""

    def __init__(self, api_key: str, timeout: float = 10.0):
        if not api_key:
            raise EmailProviderError(
                f"{self.name} API key not configured",
                retryable=False,
                provider=self.name,
            )
        self.api_key = api_key
        self.timeout = timeout

    def _post(self, url: str, **kwargs) -> requests.Response:
        try:
            response = requests.post(url, timeout=self.timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise EmailProviderError(
                f"{self.name} unreachable: {exc}", retryable=True, provider=self.name
            ) from exc

        if response.status_code >= 400:
            raise EmailProviderError(
                f"{self.name} error ({response.status_code}): {response.text}",
                retryable=is_retryable_status(response.status_code),
                provider=self.name,
                status_code=response.status_code,
            )

        return response

    def _message_id(self, response: requests.Response, key: str) -> Optional[str]:
        # the message is already accepted; an odd body must not trigger a resend
        try:
            return response.json().get(key)
        except (ValueError, AttributeError):
            logger.warning(f"{self.name} accepted the message but returned no readable id")
            return None


class BrevoProvider(HttpEmailProvider):
    name = "brevo"
    api_url = "https://api.brevo.com/v3/smtp/email"

    def send(self, message: EmailMessage) -> EmailResult:
        payload = {
            "sender": {"email": message.from_email, "name": message.from_name},
            "to": [{"email": message.to}],
            "subject": message.subject,
            "htmlContent": message.html,
        }
        if message.text:
            payload["textContent"] = message.text

        response = self._post(
            self.api_url,
            json=payload,
            headers={"api-key": self.api_key, "Content-Type": "application/json"},
        )
        return EmailResult(
            success=True,
            message_id=self._message_id(response, "messageId"),
            provider=self.name,
        )


class SendGridProvider(HttpEmailProvider):
    name = "sendgrid"
    api_url = "https://api.sendgrid.com/v3/mail/send"

    def send(self, message: EmailMessage) -> EmailResult:
        content = [{"type": "text/html", "value": message.html}]
        if message.text:
            content.insert(0, {"type": "text/plain", "value": message.text})

        payload = {
            "personalizations": [{"to": [{"email": message.to}], "subject": message.subject}],
            "from": {"email": message.from_email, "name": message.from_name},
            "content": content,
        }

        response = self._post(
            self.api_url,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        return EmailResult(
            success=True,
            message_id=response.headers.get("x-message-id") or "sent",
            provider=self.name,
        )


class MailgunProvider(HttpEmailProvider):
    name = "mailgun"

    def __init__(self, api_key: str, domain: Optional[str], timeout: float = 10.0):
        super().__init__(api_key, timeout)
        if not domain:
            raise EmailProviderError(
                "Mailgun domain not configured", retryable=False, provider=self.name
            )
        self.api_url = f"https://api.mailgun.net/v3/{domain}/messages"

    def send(self, message: EmailMessage) -> EmailResult:
        data = {
            "from": f"{message.from_name} <{message.from_email}>",
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            data["text"] = message.text

        response = self._post(self.api_url, data=data, auth=("api", self.api_key))
        return EmailResult(
            success=True, message_id=self._message_id(response, "id"), provider=self.name
        )


class PostmarkProvider(HttpEmailProvider):
    name = "postmark"
    api_url = "https://api.postmarkapp.com/email"

    def send(self, message: EmailMessage) -> EmailResult:
        payload = {
            "From": f"{message.from_name} <{message.from_email}>",
            "To": message.to,
            "Subject": message.subject,
            "HtmlBody": message.html,
            "MessageStream": "outbound",
        }
        if message.text:
            payload["TextBody"] = message.text

        response = self._post(
            self.api_url,
            json=payload,
            headers={
                "Accept": "application/json",
                "X-Postmark-Server-Token": self.api_key,
            },
        )
        return EmailResult(
            success=True, message_id=self._message_id(response, "MessageID"), provider=self.name
        )


class ResendProvider(HttpEmailProvider):
    name = "resend"
    api_url = "https://api.resend.com/emails"

    def send(self, message: EmailMessage) -> EmailResult:
        payload = {
            "from": f"{message.from_name} <{message.from_email}>",
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text

        response = self._post(
            self.api_url,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        return EmailResult(
            success=True, message_id=self._message_id(response, "id"), provider=self.name
        )


class LogProvider:
    """Writes the message to the log for manual sending."""

    name = "log"

    def send(self, message: EmailMessage) -> EmailResult:
        logger.warning(
            "EMAIL TO SEND MANUALLY\nTo: %s\nFrom: %s <%s>\nSubject: %s\n\n%s",
            message.to,
            message.from_name,
            message.from_email,
            message.subject,
            message.text or message.html,
        )
        return EmailResult(
            success=True,
            message_id=f"logged-{int(time.time() * 1000)}",
            provider=self.name,
        )


def build_email_provider(config=settings) -> EmailProvider:
    provider = config.EMAIL_PROVIDER.lower()
    timeout = config.HTTP_TIMEOUT_SECONDS

    if provider == "brevo":
        return BrevoProvider(config.EMAIL_API_KEY, timeout)
    if provider == "sendgrid":
        return SendGridProvider(config.EMAIL_API_KEY, timeout)
    if provider == "mailgun":
        return MailgunProvider(config.EMAIL_API_KEY, config.MAILGUN_DOMAIN, timeout)
    if provider == "postmark":
        return PostmarkProvider(config.EMAIL_API_KEY, timeout)
    if provider == "resend":
        return ResendProvider(config.EMAIL_API_KEY, timeout)
    if provider == "log":
        return LogProvider()

    raise EmailProviderError(
        f"Unsupported email provider: {provider}", retryable=False, provider=provider
    )


class Mailer:
    """Renders a template and hands it to the configured provider."""

    def __init__(
        self,
        provider: EmailProvider,
        from_email: str = settings.MAIL_FROM,
        from_name: str = settings.STORE_NAME,
        max_retries: int = settings.EMAIL_MAX_RETRIES,
        sleep=time.sleep,
    ):
        self.provider = provider
        self.from_email = from_email
        self.from_name = from_name
        self.max_retries = max_retries
        self.sleep = sleep

    def compose(self, to: str, kind, data: dict) -> EmailMessage:
        template = render_email(kind, data)
        return EmailMessage(
            to=to,
            from_email=self.from_email,
            from_name=self.from_name,
            subject=template.subject,
            html=template.html,
            text=template.text,
        )

    def send(self, to: str, kind, data: dict) -> EmailResult:
        if not is_valid_email(to):
            logger.warning(f"Invalid email '{to}' for {kind}, skipping")
            return EmailResult(success=False, error=f"invalid recipient {to!r}")

        try:
            message = self.compose(to, kind, data)
        except Exception as exc:
            logger.exception(f"Could not render {kind} email")
            return EmailResult(success=False, error=f"template error: {exc}")

        result = send_email_with_retry(
            self.provider,
            message,
            max_retries=self.max_retries,
            sleep=self.sleep,
        )
        return replace(result, subject=message.subject)
