"""Contact form submission."""

import logging

from redis.exceptions import RedisError

from src.config import ADMIN_EMAIL
from src.db.redis_client import RedisClient
from src.errors import InternalError, RateLimitError, ValidationError
from src.integrations.email_client import EmailDeliveryError, EmailRelay
from src.utils.text import escape_html, is_valid_email

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
MAX_EMAIL_LENGTH = 254
MAX_SUBJECT_LENGTH = 200
MAX_MESSAGE_LENGTH = 5000

DEFAULT_SUBJECT = "No subject"


def validate_contact_form(name, email, subject, message) -> None:
    """Raise ValidationError for the first invalid field."""
    if not isinstance(name, str) or not isinstance(email, str) or not isinstance(message, str):
        raise ValidationError("Invalid field types")
    if subject is not None and not isinstance(subject, str):
        raise ValidationError("Invalid subject type")
    if not name.strip() or not email.strip() or not message.strip():
        raise ValidationError("Missing required fields")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name too long (max {MAX_NAME_LENGTH} characters)")
    if len(email) > MAX_EMAIL_LENGTH:
        raise ValidationError("Email too long")
    if subject and len(subject) > MAX_SUBJECT_LENGTH:
        raise ValidationError(f"Subject too long (max {MAX_SUBJECT_LENGTH} characters)")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message too long (max {MAX_MESSAGE_LENGTH} characters)")
    if not is_valid_email(email):
        raise ValidationError("Invalid email format")


class ContactService:
    def __init__(self, email: EmailRelay, redis_client: RedisClient | None = None, admin_email: str = ADMIN_EMAIL):
        self.email = email
        self.redis_client = redis_client
        self.admin_email = admin_email

    def _check_rate_limit(self, subject: str) -> None:
        if self.redis_client is None:
            return
        try:
            allowed = self.redis_client.rate_limit_check(subject, "contact")
        except RedisError as e:
            logger.warning(f"Rate limit check unavailable, allowing request: {e}")
            return
        if not allowed:
            raise RateLimitError("Too many messages, please try again later")

    def submit_contact_form(
        self,
        name,
        email,
        message,
        subject=None,
        caller_id: str | None = None,
    ) -> dict:
        validate_contact_form(name, email, subject, message)
        self._check_rate_limit(caller_id or email.lower())

        uid = caller_id or "Anonymous"
        safe_name = escape_html(name)
        safe_email = escape_html(email)
        safe_subject = escape_html(subject or DEFAULT_SUBJECT)
        safe_message = escape_html(message)

        try:
            if self.admin_email:
                admin_html = f"""
        <h3>New contact message</h3>
        <p><strong>From:</strong> {safe_name} ({safe_email})</p>
        <p><strong>UID:</strong> {escape_html(uid)}</p>
        <p><strong>Subject:</strong> {safe_subject}</p>
        <hr />
        <p>{safe_message.replace(chr(10), "<br>")}</p>
      """
                self.email.send(self.admin_email, f"[Contact] {safe_subject} - {safe_name}", admin_html, reply_to=email)
            else:
                logger.warning("ADMIN_EMAIL not set. Admin notification skipped.")

            user_html = f"""
      <p>Hi {safe_name},</p>
      <p>We have received your message with the subject: &quot;<strong>{safe_subject}</strong>&quot;.</p>
      <p>We will get back to you as soon as possible.</p>
      <br>
      <p>The Garden Exchange team</p>
    """
            self.email.send(email, "We have received your message", user_html)
        except EmailDeliveryError as e:
            logger.error(f"Error in contact form submission from {uid}: {e}")
            raise InternalError("Failed to send your message") from e

        logger.info(f"Contact form submitted by {uid}")
        return {"success": True}
