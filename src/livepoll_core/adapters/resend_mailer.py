"""EmailSender backed by Resend.

The resend SDK is synchronous and module-configured; sends run in a
worker thread.
"""

from __future__ import annotations

import asyncio
import logging

import resend
from resend.exceptions import ResendError

from livepoll_core.errors import DeliveryFailed
from livepoll_core.interfaces import EmailSender

logger = logging.getLogger(__name__)


class ResendEmailSender(EmailSender):
    """Args:
        api_key: Resend API key.
        sender: ``From`` address, e.g. ``"LivePoll <no-reply@example.com>"``.
    """

    def __init__(self, api_key: str, sender: str) -> None:
        resend.api_key = api_key
        self._sender = sender

    async def send(self, *, to: str, subject: str, html: str, text: str) -> None:
        params = {
            "from": self._sender,
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        }
        try:
            response = await asyncio.to_thread(resend.Emails.send, params)
        except (ResendError, OSError) as exc:
            logger.warning("Resend delivery to %s failed: %s", to, exc)
            raise DeliveryFailed(str(exc)) from exc
        message_id = response.get("id") if isinstance(response, dict) else response
        logger.debug("Resend accepted message %s", message_id)
