"""Outbound email via Resend."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import resend

from trainfit.config import settings

logger = logging.getLogger(__name__)


@dataclass
class EmailResult:
    """Outcome of one send. Exactly one of ``message_id`` / ``error`` is set."""

    success: bool
    message_id: str | None = None
    error: str | None = None


class EmailSender(Protocol):
    async def send(self, to: str, subject: str, html: str) -> EmailResult: ...


class ResendEmailSender:
    """Send HTML emails through the Resend API.

    Resend's client is synchronous, so the call runs in a worker thread.
    Failures are reported in the result, never raised.
    """

    def __init__(self, api_key: str | None = None, from_address: str | None = None) -> None:
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.from_address = from_address or settings.email_from_address

    async def send(self, to: str, subject: str, html: str) -> EmailResult:
        if not self.api_key:
            logger.error("Email not sent to %s: RESEND_API_KEY is not configured", to)
            return EmailResult(success=False, error="Email service not configured")

        resend.api_key = self.api_key
        params = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        try:
            response = await asyncio.to_thread(resend.Emails.send, params)
        except Exception as e:
            logger.error("Email send error to %s: %s", to, e)
            return EmailResult(success=False, error=str(e))

        message_id = response.get("id") if isinstance(response, dict) else None
        logger.info("Email sent to %s (id=%s)", to, message_id)
        return EmailResult(success=True, message_id=message_id)


def get_email_sender() -> EmailSender:
    """FastAPI dependency for the configured email sender."""
    return ResendEmailSender()
