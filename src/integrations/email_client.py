"""SMTP relay for outbound email."""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr, make_msgid

from src.config import EMAIL_CONFIG

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    pass


class EmailRelay:
    """
    Sends HTML email through an authenticated SMTP server.

    When credentials are not configured every send is skipped with a
    warning, so email can be disabled entirely without touching callers.
    """

    def __init__(self, config: dict | None = None):
        self.config = {**EMAIL_CONFIG, **(config or {})}

    @property
    def enabled(self) -> bool:
        return bool(self.config["user"] and self.config["password"])

    def send(self, to: str, subject: str, html: str, reply_to: str | None = None) -> str | None:
        """
        Send an HTML email.

        Returns:
            The message id, or None when email is disabled

        Raises:
            EmailDeliveryError: If the relay rejects the message
        """
        if not self.enabled:
            logger.warning(f"Email credentials not set. Skipping email send to {to} ({subject})")
            return None

        message = EmailMessage()
        message["From"] = formataddr((self.config["sender_name"], self.config["user"]))
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid()
        if reply_to:
            message["Reply-To"] = reply_to
        message.set_content("This message requires an HTML-capable email client.")
        message.add_alternative(html, subtype="html")

        try:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(self.config["host"], self.config["port"], context=context) as server:
                server.login(self.config["user"], self.config["password"])
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Error sending email to {to}: {e}")
            raise EmailDeliveryError(str(e)) from e

        logger.info(f"Email sent: {message['Message-ID']}")
        return message["Message-ID"]
