"""
Simulated email service providers.

Nothing here talks to a real API: every provider logs the message and hands back a
fake message id so callers can record delivery the same way they would for a live
integration.
"""
from __future__ import annotations

import logging
import secrets
from typing import Any, Optional

from fastapi import Depends

from storeadmin.config import Settings, get_settings
from storeadmin.utils.logger import log_with_context

logger = logging.getLogger(__name__)

NOTIFICATION_SUBJECTS = {
    "welcome": "Welcome to Recovery Essentials!",
    "new_order": "Order {order_id} received",
    "status_update": "Order {order_id} is now {status}",
    "refund_processed": "Refund processed for order {order_id}",
}


class EmailProvider:
    name = "log"

    def __init__(self, sender: str):
        self.sender = sender
        self.sent_count = 0

    async def send(self, to: str, subject: str, body: str) -> dict[str, Any]:
        message_id = f"{self.name}-{secrets.token_hex(8)}"
        self.sent_count += 1
        log_with_context(logger, "info", "Email queued", provider=self.name, to=to, message_id=message_id)
        logger.debug("Subject: %s", subject)
        return {"provider": self.name, "message_id": message_id, "status": "queued"}


class MailchimpProvider(EmailProvider):
    name = "mailchimp"


class SendGridProvider(EmailProvider):
    name = "sendgrid"


PROVIDERS: dict[str, type[EmailProvider]] = {
    EmailProvider.name: EmailProvider,
    MailchimpProvider.name: MailchimpProvider,
    SendGridProvider.name: SendGridProvider,
}


def build_provider(name: str, sender: str) -> EmailProvider:
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        logger.warning("Unknown email provider %s, falling back to log", name)
        provider_cls = EmailProvider
    return provider_cls(sender)


def get_email_provider(settings: Settings = Depends(get_settings)) -> EmailProvider:
    return build_provider(settings.email_provider, settings.email_sender)


async def send_notification(
    provider: Optional[EmailProvider],
    *,
    to: Optional[str],
    kind: str,
    **context: Any,
) -> Optional[dict[str, Any]]:
    """Send a transactional notification; a missing provider or address is a no-op."""
    if provider is None or not to:
        return None
    subject = NOTIFICATION_SUBJECTS.get(kind, kind.replace("_", " ").title()).format(**context)
    body = "\n".join(f"{key}: {value}" for key, value in context.items())
    return await provider.send(to, subject, body)
