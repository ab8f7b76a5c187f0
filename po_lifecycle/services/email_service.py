"""
Outbound e-mail through the Brevo transactional API.

Lifecycle notifications are fire-and-forget: send_email never raises, it
reports delivery with its boolean result and logs the reason otherwise.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
import structlog

from po_lifecycle.config import settings

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"
MAX_ATTEMPTS = 3

_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


@dataclass
class OutboundEmail:
    to: list[str]
    subject: str
    html: str
    sender_name: str = field(default_factory=lambda: settings.APP_NAME)
    sender_email: str = field(default_factory=lambda: settings.EMAIL_FROM_ADDRESS)

    def to_brevo_payload(self) -> dict:
        return {
            "sender": {"name": self.sender_name, "email": self.sender_email},
            "to": [{"email": address} for address in self.to],
            "subject": self.subject,
            "htmlContent": self.html,
        }


class BrevoTransientError(Exception):
    """5xx or network failure; worth another attempt."""


async def _post_once(email: OutboundEmail) -> bool:
    headers = {
        "accept": "application/json",
        "api-key": settings.BREVO_API_KEY or "",
        "content-type": "application/json",
    }
    try:
        response = await get_http_client().post(
            BREVO_API_URL, headers=headers, json=email.to_brevo_payload()
        )
    except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
        logger.warning("email_network_error", error=str(exc), to=email.to)
        raise BrevoTransientError(str(exc)) from exc

    if response.status_code >= 500:
        logger.warning("email_brevo_5xx", status_code=response.status_code, to=email.to)
        raise BrevoTransientError(f"Brevo returned {response.status_code}")

    if response.status_code not in (201, 202):
        logger.error(
            "email_rejected_by_brevo",
            status_code=response.status_code,
            response=response.text[:500],
            to=email.to,
        )
        return False

    logger.info("email_sent", to=email.to, subject=email.subject)
    return True


async def send_email(email: OutboundEmail) -> bool:
    if not settings.BREVO_API_KEY:
        logger.warning("brevo_api_key_missing", subject=email.subject)
        return False
    if not email.to:
        logger.warning("email_no_recipients", subject=email.subject)
        return False

    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(BrevoTransientError),
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            before_sleep=before_sleep_log(_std_logger, logging.WARNING),
            reraise=False,
        ):
            with attempt:
                return await _post_once(email)
    except RetryError:
        logger.error("email_retries_exhausted", to=email.to, subject=email.subject)
    return False
