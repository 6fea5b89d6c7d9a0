# mindfulcare/services/email_providers.py
"""
Transactional email providers.

One provider is chosen from settings at startup (`build_email_provider`);
the dispatcher only ever sees the `EmailProvider` interface.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Optional

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from mindfulcare.core.config import Settings
from mindfulcare.core.errors import NotificationDeliveryError
from mindfulcare.core.logging import mask_email

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailProvider(ABC):
    name: str = "abstract"

    @abstractmethod
    async def send(self, to: str, subject: str, html_body: str) -> None:
        """Hand one message to the provider; raise NotificationDeliveryError on refusal."""


@dataclass
class OutboxMessage:
    to: str
    subject: str
    html_body: str
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class LogEmailProvider(EmailProvider):
    """Development provider: logs recipient and subject and keeps the last messages in memory."""

    name = "mock"

    def __init__(self, max_outbox: int = 200):
        self.outbox: Deque[OutboxMessage] = deque(maxlen=max_outbox)

    async def send(self, to: str, subject: str, html_body: str) -> None:
        self.outbox.append(OutboxMessage(to=to, subject=subject, html_body=html_body))
        logger.info("Mock email to %s: %s", mask_email(to), subject)


class _HttpEmailProvider(EmailProvider):
    def __init__(self, sender: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self.sender = sender
        self._client = client
        self._timeout = timeout

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        try:
            if self._client is not None:
                response = await self._client.post(url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, **kwargs)
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(self.name, f"transport error: {e}") from e

        if response.status_code >= 400:
            raise NotificationDeliveryError(
                self.name, f"HTTP {response.status_code}: {response.text[:200]}"
            )
        return response


class SendGridEmailProvider(_HttpEmailProvider):
    name = "sendgrid"

    def __init__(self, api_key: str, sender: str, client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        super().__init__(sender, client, timeout)
        self.api_key = api_key

    async def send(self, to: str, subject: str, html_body: str) -> None:
        await self._post(
            SENDGRID_URL,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "personalizations": [{"to": [{"email": to}]}],
                "from": {"email": self.sender},
                "subject": subject,
                "content": [{"type": "text/html", "value": html_body}],
            },
        )
        logger.info("SendGrid accepted email to %s", mask_email(to))


class MailgunEmailProvider(_HttpEmailProvider):
    name = "mailgun"

    def __init__(self, api_key: str, domain: str, sender: str,
                 api_base: str = "https://api.mailgun.net/v3",
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        super().__init__(sender, client, timeout)
        self.api_key = api_key
        self.domain = domain
        self.api_base = api_base.rstrip("/")

    async def send(self, to: str, subject: str, html_body: str) -> None:
        await self._post(
            f"{self.api_base}/{self.domain}/messages",
            auth=("api", self.api_key),
            data={"from": self.sender, "to": [to], "subject": subject, "html": html_body},
        )
        logger.info("Mailgun accepted email to %s", mask_email(to))


class SesEmailProvider(EmailProvider):
    name = "aws-ses"

    def __init__(self, sender: str, region: str, client=None):
        self.sender = sender
        self.client = client or boto3.client("ses", region_name=region)

    def _send_sync(self, to: str, subject: str, html_body: str) -> str:
        response = self.client.send_email(
            Source=self.sender,
            Destination={"ToAddresses": [to]},
            Message={
                "Subject": {"Data": subject},
                "Body": {"Html": {"Data": html_body}},
            },
        )
        return response.get("MessageId", "")

    async def send(self, to: str, subject: str, html_body: str) -> None:
        try:
            message_id = await asyncio.to_thread(self._send_sync, to, subject, html_body)
        except (ClientError, BotoCoreError) as e:
            raise NotificationDeliveryError(self.name, str(e)) from e
        logger.info("SES accepted email to %s (message id %s)", mask_email(to), message_id)


def build_email_provider(settings: Settings) -> EmailProvider:
    """Resolve the configured provider once, at startup."""
    name = settings.email_provider_name
    timeout = settings.EXTERNAL_CALL_TIMEOUT_SECONDS

    if name in ("mock", "log", ""):
        if settings.is_production:
            logger.warning("Using mock email provider in production environment")
        return LogEmailProvider()

    if name == "sendgrid":
        if not settings.SENDGRID_API_KEY:
            raise ValueError("EMAIL_PROVIDER=sendgrid requires SENDGRID_API_KEY")
        return SendGridEmailProvider(settings.SENDGRID_API_KEY, settings.EMAIL_FROM, timeout=timeout)

    if name == "mailgun":
        if not (settings.MAILGUN_API_KEY and settings.MAILGUN_DOMAIN):
            raise ValueError("EMAIL_PROVIDER=mailgun requires MAILGUN_API_KEY and MAILGUN_DOMAIN")
        return MailgunEmailProvider(
            settings.MAILGUN_API_KEY,
            settings.MAILGUN_DOMAIN,
            settings.EMAIL_FROM,
            api_base=settings.MAILGUN_API_BASE,
            timeout=timeout,
        )

    if name in ("aws-ses", "ses"):
        return SesEmailProvider(settings.EMAIL_FROM, settings.AWS_REGION)

    raise ValueError(f"Unknown EMAIL_PROVIDER: {settings.EMAIL_PROVIDER!r}")
