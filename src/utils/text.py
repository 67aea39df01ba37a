"""Text helpers for user-provided content."""

import html
import re

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DEFAULT_DISPLAY_NAME = "A user"


def escape_html(value) -> str:
    """Escape a value for interpolation into HTML email bodies."""
    if not isinstance(value, str):
        return ""
    return html.escape(value, quote=True)


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value))


def snippet(text: str, length: int = 100) -> str:
    """Shorten text for notification metadata."""
    text = " ".join(text.split())
    if len(text) <= length:
        return text
    return text[: length - 1].rstrip() + "…"
