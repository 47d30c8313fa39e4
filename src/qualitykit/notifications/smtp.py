"""Email notification channel over SMTP."""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Any

from qualitykit.config import SmtpSettings
from qualitykit.errors import DispatchError
from qualitykit.models import ChannelType

from .base import DeliveryReceipt, NotificationChannel

logger = logging.getLogger(__name__)


class EmailChannel(NotificationChannel):
    """Sends plain-text alert emails through an SMTP relay."""

    channel_type = ChannelType.EMAIL

    def __init__(self, settings: SmtpSettings, smtp_factory=smtplib.SMTP):
        self.settings = settings
        self._smtp_factory = smtp_factory

    def build_message(self, recipient: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.settings.sender
        msg["To"] = recipient
        msg.set_content(body)
        return msg

    def send(self, recipient: str, subject: str, body: str, **fields: Any) -> DeliveryReceipt:
        if not recipient:
            raise DispatchError(self.channel_type.value, "no recipient given")
        msg = self.build_message(recipient, subject, body)
        settings = self.settings
        try:
            with self._smtp_factory(settings.host, settings.port, timeout=settings.timeout_seconds) as server:
                if settings.use_starttls:
                    server.starttls(context=ssl.create_default_context())
                if settings.username and settings.password:
                    server.login(settings.username, settings.password.get_secret_value())
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DispatchError(self.channel_type.value, f"SMTP delivery to {recipient} failed: {e}") from e

        logger.debug(f"Sent email '{subject}' to {recipient}")
        return DeliveryReceipt(channel=self.channel_type, recipient=recipient, status="sent")
