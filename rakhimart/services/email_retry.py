import time
import random
import logging

from rakhimart.exceptions import EmailProviderError

logger = logging.getLogger(__name__)

def send_email_with_retry(
    provider,
    message,
    max_retries: int = 3,
    sleep=time.sleep,
):
    from rakhimart.services.email_service import EmailResult

    last_error = None

    for attempt in range(1, max_retries + 1):
        try:
            result = provider.send(message)
            logger.info(f"Email sent to {message.to} via {provider.name} (attempt {attempt})")
            return result

        except EmailProviderError as e:
            last_error = str(e)
            logger.warning(f"Attempt {attempt} failed: {last_error}")

            if not e.retryable:
                break  # auth / bad request → no retry

        except Exception as e:
            last_error = str(e)
            logger.warning(f"Attempt {attempt} failed: {last_error}")

        if attempt < max_retries:
            sleep((2 ** attempt) + random.random())

    logger.error(f"Email permanently failed: {last_error}")
    return EmailResult(success=False, error=last_error, provider=provider.name)
