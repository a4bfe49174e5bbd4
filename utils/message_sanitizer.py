"""
Message sanitization utility to prevent XSS attacks.
Strips HTML tags and control characters from user messages.
"""

import logging

import bleach

from config import MESSAGE_SANITIZE_ENABLED

logger = logging.getLogger(__name__)


def sanitize_message(message: str) -> str:
    """
    Sanitize a message by stripping HTML tags and control characters.

    Args:
        message: Raw message string from user

    Returns:
        Sanitized message string safe for display
    """
    if not message:
        return ""

    cleaned = message.strip()

    if not MESSAGE_SANITIZE_ENABLED:
        return cleaned

    # tags=[] allows no HTML; strip=True drops tags instead of escaping them
    sanitized = bleach.clean(cleaned, tags=[], strip=True)

    sanitized = "".join(
        char
        for char in sanitized
        if char.isprintable() or char in ["\n", "\r", "\t"]
    )

    return sanitized.strip()
