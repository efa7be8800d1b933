"""SendGrid notification channel for the daily digest."""

import asyncio
import html
import logging
from typing import Any, Optional, Sequence

from python_http_client.exceptions import HTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Content, Mail

from ..config import ConfigError, config

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when a notification cannot be delivered."""

    pass


def render_html(body: str) -> str:
    """Render a plain-text body as minimal HTML, one paragraph per block."""
    blocks = [b.strip() for b in body.split("\n\n") if b.strip()]
    paragraphs = "".join(
        f"<p>{html.escape(block).replace(chr(10), '<br>')}</p>" for block in blocks
    )
    return f'<div style="font-family: sans-serif; font-size: 14px;">{paragraphs}</div>'


class SendGridNotifier:
    """Sends plain-text notifications (with an HTML rendering) via SendGrid.

    Attributes:
        from_email: Sender address.
        from_name: Sender display name.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        client: Optional[Any] = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else config.SENDGRID_API_KEY
        self.from_email = from_email or config.SENDGRID_FROM_EMAIL
        self.from_name = from_name or config.SENDGRID_FROM_NAME
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise ConfigError("SENDGRID_API_KEY is required for digest delivery")
            self._client = SendGridAPIClient(api_key=self._api_key)
        return self._client

    def _build_mail(self, recipients: Sequence[str], subject: str, body: str) -> Mail:
        mail = Mail(
            from_email=(self.from_email, self.from_name),
            to_emails=list(recipients),
            subject=subject,
        )
        mail.add_content(Content("text/plain", body))
        mail.add_content(Content("text/html", render_html(body)))
        return mail

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> None:
        """Deliver one message to every recipient.

        Raises:
            ConfigError: If the API key or sender address is missing.
            NotificationError: If SendGrid rejects the message.
        """
        if not recipients:
            raise NotificationError("No recipients given")
        if not self.from_email:
            raise ConfigError("SENDGRID_FROM_EMAIL is required for digest delivery")

        client = self._get_client()
        mail = self._build_mail(recipients, subject, body)

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, lambda: client.send(mail))
        except HTTPError as e:
            raise NotificationError(f"SendGrid rejected the message: {e}") from e

        if response.status_code not in (200, 201, 202):
            raise NotificationError(
                f"SendGrid returned status code {response.status_code}"
            )

        logger.info(
            "Notification sent",
            extra={"recipient_count": len(recipients), "subject": subject},
        )
