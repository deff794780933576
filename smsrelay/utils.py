"""
Utility functions for the SMS relay API.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

# "+" then 9-15 ASCII digits, no leading zero; used with fullmatch
PHONE_NUMBER_PATTERN = re.compile(r"\+[1-9][0-9]{8,14}")

EMAIL_PATTERN = re.compile(r"[\w+\-.]+@[a-z\d\-]+(\.[a-z\d\-]+)*\.[a-z]+", re.IGNORECASE)

BEARER_PREFIX = "Bearer "


def format_utc(value: datetime) -> str:
    """ISO-8601 UTC timestamp with a Z suffix. Naive values are read as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def normalize_email(email: Optional[str]) -> str:
    """Trim and lower-case an email for storage and comparison."""
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return EMAIL_PATTERN.fullmatch(email) is not None


def is_valid_phone_number(number: Optional[str]) -> bool:
    return bool(number) and PHONE_NUMBER_PATTERN.fullmatch(number) is not None


def is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Pull the token out of an Authorization header.

    Args:
        authorization: Raw header value

    Returns:
        The token, or None if the header is absent or not "Bearer <token>"
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token or " " in token:
        logger.debug("Authorization header is not in 'Bearer <token>' form")
        return None
    return token
